from django.db import models
from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.utils import timezone
from .managers import UserManager


# ============================
# User Model
# ============================

class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom user model with email-based authentication.
    The role decides which side of an order the user acts on.
    """

    class Role(models.TextChoices):
        ADMIN = "ADMIN", "Admin"
        BUYER = "BUYER", "Buyer"
        MANUFACTURER = "MANUFACTURER", "Manufacturer"

    # Core fields
    email = models.EmailField(unique=True, db_index=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.BUYER, db_index=True)
    full_name = models.CharField(max_length=150, blank=True)

    # Account status
    is_active = models.BooleanField(default=True)
    is_staff = models.BooleanField(default=False)

    # Timestamps
    date_joined = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        indexes = [
            models.Index(fields=['role'], name='accounts_us_role_idx'),
        ]

    def __str__(self):
        return self.email

    @property
    def is_admin_role(self):
        return self.role == self.Role.ADMIN

    @property
    def is_manufacturer(self):
        return self.role == self.Role.MANUFACTURER


# ============================
# Manufacturer Profile
# ============================

class ManufacturerProfile(models.Model):
    """
    Production partner details.
    Only verified, unpaused manufacturers can be assigned to orders.
    """
    user = models.OneToOneField(
        User,
        on_delete=models.CASCADE,
        related_name='manufacturer_profile'
    )
    company_name = models.CharField(max_length=200)
    city = models.CharField(max_length=100, blank=True)
    monthly_capacity = models.PositiveIntegerField(
        default=0,
        help_text="Pieces per month the unit can produce"
    )

    # Verification
    is_verified = models.BooleanField(default=False, db_index=True)
    verified_at = models.DateTimeField(null=True, blank=True)

    # Pause control (manufacturer temporarily not taking orders)
    is_paused = models.BooleanField(default=False)
    paused_at = models.DateTimeField(null=True, blank=True)
    pause_reason = models.CharField(max_length=255, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = 'Manufacturer Profile'
        verbose_name_plural = 'Manufacturer Profiles'

    def __str__(self):
        return f"{self.company_name} ({self.user.email})"

    def verify(self):
        """Mark this manufacturer as verified."""
        self.is_verified = True
        self.verified_at = timezone.now()
        self.save(update_fields=['is_verified', 'verified_at'])

    def pause(self, reason=""):
        """Stop receiving new assignments."""
        self.is_paused = True
        self.paused_at = timezone.now()
        self.pause_reason = reason
        self.save(update_fields=['is_paused', 'paused_at', 'pause_reason'])

    def resume(self):
        self.is_paused = False
        self.paused_at = None
        self.pause_reason = ""
        self.save(update_fields=['is_paused', 'paused_at', 'pause_reason'])

    @property
    def is_assignable(self):
        return self.is_verified and not self.is_paused
