from rest_framework.permissions import BasePermission


class IsEscrowParticipantOrStaff(BasePermission):
    """
    Allows access only to the entry's buyer, its farmer, or staff.
    This permission is checked against a single EscrowEntry object.
    """
    def has_object_permission(self, request, view, obj):
        user = request.user
        if user.is_staff:
            return True
        return user.id in (obj.buyer_id, obj.farmer_id)


class IsEscrowBuyerOrStaff(BasePermission):
    """
    Allows access only to the buyer who paid into the escrow, or staff.
    """
    def has_object_permission(self, request, view, obj):
        return request.user.is_staff or request.user.id == obj.buyer_id
