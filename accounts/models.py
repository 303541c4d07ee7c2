from django.contrib.auth.models import AbstractUser, BaseUserManager
from django.db import models
from django.utils.translation import gettext_lazy as _


class UserManager(BaseUserManager):
    """
    Custom manager to easily create different types of school users.
    """

    def create_user(self, email, password=None, **extra_fields):
        """Base method for creating a generic user."""
        if not email:
            raise ValueError(_('The Email must be set'))
        email = self.normalize_email(email)
        user = self.model(email=email, **extra_fields)
        user.set_password(password)
        user.save(using=self._db)
        return user

    def create_superuser(self, email, password=None, **extra_fields):
        """Create a Superuser (Platform Owner)."""
        extra_fields.setdefault('is_staff', True)
        extra_fields.setdefault('is_superuser', True)
        extra_fields.setdefault('is_active', True)
        extra_fields.setdefault('role', User.Role.SUPER_ADMIN)

        if extra_fields.get('is_staff') is not True:
            raise ValueError(_('Superuser must have is_staff=True.'))
        if extra_fields.get('is_superuser') is not True:
            raise ValueError(_('Superuser must have is_superuser=True.'))

        return self.create_user(email, password, **extra_fields)

    # --- ROLE SPECIFIC HELPERS ---

    def create_school_admin(self, email, password=None, school=None, **extra_fields):
        """Create a School Administrator."""
        extra_fields.setdefault('role', User.Role.SCHOOL_ADMIN)
        return self.create_user(email, password, school=school, **extra_fields)

    def create_head_teacher(self, email, password=None, school=None, **extra_fields):
        """Create a Head Teacher (Principal)."""
        extra_fields.setdefault('role', User.Role.HEAD_TEACHER)
        return self.create_user(email, password, school=school, **extra_fields)

    def create_teacher(self, email, password=None, school=None, **extra_fields):
        """Create a Teacher."""
        extra_fields.setdefault('role', User.Role.TEACHER)
        return self.create_user(email, password, school=school, **extra_fields)


class User(AbstractUser):
    class Role(models.TextChoices):
        SUPER_ADMIN = 'SUPER_ADMIN', _('Super Admin')
        SCHOOL_ADMIN = 'SCHOOL_ADMIN', _('School Admin')
        HEAD_TEACHER = 'HEAD_TEACHER', _('Head Teacher')
        TEACHER = 'TEACHER', _('Teacher')
        STUDENT = 'STUDENT', _('Student')
        PARENT = 'PARENT', _('Parent')

    username = None
    email = models.EmailField(_('email address'), unique=True)

    role = models.CharField(
        max_length=20,
        choices=Role.choices,
        default=Role.TEACHER
    )
    # Null only for platform-level users (SUPER_ADMIN)
    school = models.ForeignKey(
        'schools.School',
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='users'
    )

    USERNAME_FIELD = 'email'
    REQUIRED_FIELDS = []

    objects = UserManager()

    def __str__(self):
        return self.email

    @property
    def role_label(self):
        """Helper to get a string representation of the user's role"""
        if self.is_superuser:
            return "Super Admin"
        return self.get_role_display()

    @property
    def is_school_admin(self):
        return self.role == self.Role.SCHOOL_ADMIN

    @property
    def is_head_teacher(self):
        return self.role == self.Role.HEAD_TEACHER
