from rest_framework.permissions import BasePermission


class IsFarmer(BasePermission):
    """Only farmers receive payouts, so only they manage payout methods."""
    message = "Only farmers can manage payout methods."

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and getattr(request.user, 'is_farmer', False))
