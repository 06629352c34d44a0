from rest_framework.permissions import BasePermission

MODERATORS_GROUP = 'Moderators'


def is_moderator(user):
    return user.is_staff or user.groups.filter(name=MODERATORS_GROUP).exists()


class IsModerator(BasePermission):
    """
    Allows access only to staff and users in the 'Moderators' group.
    """
    def has_permission(self, request, view):
        if not request.user.is_authenticated:
            return False
        return is_moderator(request.user)


class IsEscrowParty(BasePermission):
    """
    Allows access only to the buyer or farmer of the escrow.
    This permission is checked against a single EscrowEntry object.
    """
    message = "Only the buyer or farmer of this order can raise a dispute."

    def has_object_permission(self, request, view, obj):
        return request.user.id in (obj.buyer_id, obj.farmer_id)
