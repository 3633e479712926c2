from django.contrib.auth.models import AbstractUser, UserManager as DjangoUserManager
from django.db import models


class UserManager(DjangoUserManager):
    def create_superuser(self, username, email=None, password=None, **extra_fields):
        extra_fields.setdefault('role', 'general_secretary')
        return super().create_superuser(username, email=email, password=password, **extra_fields)

    def boarders(self):
        return self.filter(role=User.ROLE_BOARDER, is_active=True)


class User(AbstractUser):
    ROLE_GENERAL_SECRETARY = 'general_secretary'
    ROLE_MESS_MANAGER = 'mess_manager'
    ROLE_BOARDER = 'boarder'

    ROLE_CHOICES = (
        (ROLE_GENERAL_SECRETARY, 'General Secretary'),
        (ROLE_MESS_MANAGER, 'Mess Manager'),
        (ROLE_BOARDER, 'Boarder'),
    )
    ADMIN_ROLES = (ROLE_GENERAL_SECRETARY, ROLE_MESS_MANAGER)

    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_BOARDER)
    email = models.EmailField(unique=True, null=True, blank=True)
    room_number = models.CharField(max_length=20, blank=True)

    objects = UserManager()

    class Meta:
        ordering = ['first_name', 'username']
        indexes = [
            models.Index(fields=['role']),
        ]

    def save(self, *args, **kwargs):
        if self.is_superuser and self.role != self.ROLE_GENERAL_SECRETARY:
            self.role = self.ROLE_GENERAL_SECRETARY
        if self.email == '':
            self.email = None
        super().save(*args, **kwargs)

    @property
    def display_name(self):
        return self.get_full_name() or self.username

    @property
    def is_mess_admin(self):
        return self.role in self.ADMIN_ROLES

    def __str__(self):
        return f"{self.display_name} ({self.role})"


class AuditLog(models.Model):
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True
    )

    action = models.CharField(max_length=100)
    target_model = models.CharField(max_length=100, blank=True)
    target_id = models.CharField(max_length=64, blank=True)
    details = models.TextField(blank=True)

    method = models.CharField(max_length=10, blank=True)
    path = models.CharField(max_length=255, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', '-created_at']),
            models.Index(fields=['action']),
        ]

    def __str__(self):
        return f"{self.action} by {self.user_id or 'system'}"
