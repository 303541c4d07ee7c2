from django.core.exceptions import PermissionDenied
from django.test import TestCase
from django.contrib.auth import get_user_model

from schools.models import School
from .permissions import Actor, require_report_manager, require_settings_manager

User = get_user_model()


class UserManagerTests(TestCase):
    """Tests for the custom UserManager."""

    def setUp(self):
        self.school = School.objects.create(name='Kibo High', code='KHS')

    def test_create_user(self):
        """Test creating a regular user with email."""
        user = User.objects.create_user(
            email='test@example.com',
            password='testpass123'
        )
        self.assertEqual(user.email, 'test@example.com')
        self.assertTrue(user.check_password('testpass123'))
        self.assertFalse(user.is_staff)
        self.assertFalse(user.is_superuser)
        self.assertEqual(user.role, User.Role.TEACHER)

    def test_create_user_without_email_raises_error(self):
        """Test that creating a user without email raises ValueError."""
        with self.assertRaises(ValueError):
            User.objects.create_user(email='', password='testpass123')

    def test_create_user_normalizes_email(self):
        """Test that email is normalized (lowercase domain)."""
        user = User.objects.create_user(
            email='test@EXAMPLE.COM',
            password='testpass123'
        )
        self.assertEqual(user.email, 'test@example.com')

    def test_create_superuser(self):
        """Test creating a superuser."""
        user = User.objects.create_superuser(
            email='admin@example.com',
            password='adminpass123'
        )
        self.assertTrue(user.is_staff)
        self.assertTrue(user.is_superuser)
        self.assertEqual(user.role, User.Role.SUPER_ADMIN)
        self.assertIsNone(user.school)

    def test_create_superuser_without_is_staff_raises_error(self):
        """Test that superuser must have is_staff=True."""
        with self.assertRaises(ValueError):
            User.objects.create_superuser(
                email='admin@example.com',
                password='adminpass123',
                is_staff=False
            )

    def test_role_helpers(self):
        """Test the role specific helpers attach the school."""
        admin = User.objects.create_school_admin('admin@kibo.test', 'pass', school=self.school)
        head = User.objects.create_head_teacher('head@kibo.test', 'pass', school=self.school)
        teacher = User.objects.create_teacher('teacher@kibo.test', 'pass', school=self.school)

        self.assertTrue(admin.is_school_admin)
        self.assertTrue(head.is_head_teacher)
        self.assertEqual(teacher.role, User.Role.TEACHER)
        self.assertEqual(set(self.school.users.all()), {admin, head, teacher})


class PermissionTests(TestCase):
    """Tests for role checks on resolved actors."""

    def setUp(self):
        self.school = School.objects.create(name='Kibo High', code='KHS')
        self.other = School.objects.create(name='Other High', code='OHS')
        self.admin = Actor.from_user(
            User.objects.create_school_admin('admin@kibo.test', 'pass', school=self.school)
        )
        self.head = Actor.from_user(
            User.objects.create_head_teacher('head@kibo.test', 'pass', school=self.school)
        )
        self.teacher = Actor.from_user(
            User.objects.create_teacher('teacher@kibo.test', 'pass', school=self.school)
        )
        self.root = Actor.from_user(
            User.objects.create_superuser('root@example.com', 'pass')
        )

    def test_report_manager(self):
        require_report_manager(self.admin, self.school.pk)
        require_report_manager(self.head, self.school.pk)
        with self.assertRaises(PermissionDenied):
            require_report_manager(self.teacher, self.school.pk)

    def test_settings_manager(self):
        require_settings_manager(self.admin, self.school.pk)
        with self.assertRaises(PermissionDenied):
            require_settings_manager(self.head, self.school.pk)

    def test_other_school_denied(self):
        with self.assertRaises(PermissionDenied):
            require_report_manager(self.admin, self.other.pk)

    def test_super_admin_passes_everywhere(self):
        self.assertTrue(self.root.is_super_admin)
        require_settings_manager(self.root, self.other.pk)

    def test_anonymous_denied(self):
        with self.assertRaises(PermissionDenied):
            require_report_manager(None, self.school.pk)
