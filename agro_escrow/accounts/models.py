from django.db import models
from django.contrib.auth.models import AbstractUser, BaseUserManager
from auditlog.registry import auditlog
from auditlog.models import AuditlogHistoryField


class CustomUserManager(BaseUserManager):
    """
    Manager for CustomUser. Handles user and superuser creation using email as the unique identifier.
    """
    def create_user(self, email, password=None, **extra_fields):
        if not email:
            raise ValueError("Email is required.")
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)

        return self.create_user(email, password, **extra_fields)


class CustomUser(AbstractUser):
    """
    Marketplace account, identified by email.
    Farmers receive escrow payouts; buyers fund orders and receive refunds.
    """
    FARMER = 'farmer'
    BUYER = 'buyer'

    USER_TYPE_CHOICES = (
        (FARMER, 'Farmer'),
        (BUYER, 'Buyer'),
    )

    user_type = models.CharField(max_length=20, choices=USER_TYPE_CHOICES, blank=True)
    phone_number = models.CharField(max_length=20, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    email = models.EmailField(unique=True, blank=False)
    username = None

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = ['first_name', 'last_name']

    objects = CustomUserManager()

    history = AuditlogHistoryField()

    def __str__(self):
        return self.email

    @property
    def is_farmer(self):
        return self.user_type == self.FARMER

    @property
    def is_buyer(self):
        return self.user_type == self.BUYER


auditlog.register(CustomUser, exclude_fields=['password', 'last_login'])
