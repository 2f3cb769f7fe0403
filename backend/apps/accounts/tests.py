from django.urls import reverse
from rest_framework.test import APITestCase
from rest_framework import status
from apps.accounts.models import User, ManufacturerProfile


class TestAccountsModels(APITestCase):

    def test_create_user_defaults_to_buyer(self):

        user = User.objects.create_user(email="Buyer@Test.com", password="StrongPass123!")

        self.assertEqual(user.role, User.Role.BUYER)
        self.assertEqual(user.email, "Buyer@test.com")
        self.assertTrue(user.check_password("StrongPass123!"))

    def test_create_user_requires_email(self):

        with self.assertRaises(ValueError):
            User.objects.create_user(email="", password="x")

    def test_create_superuser_is_admin(self):

        admin = User.objects.create_superuser(email="root@test.com", password="StrongPass123!")

        self.assertEqual(admin.role, User.Role.ADMIN)
        self.assertTrue(admin.is_staff)
        self.assertTrue(admin.is_admin_role)

    # ======================================================
    # MANUFACTURER PROFILE
    # ======================================================

    def test_create_manufacturer_with_profile(self):

        manufacturer = User.objects.create_manufacturer(
            email="mfg@test.com",
            company_name="Tiruppur Knits",
            password="StrongPass123!",
        )

        self.assertTrue(manufacturer.is_manufacturer)
        profile = manufacturer.manufacturer_profile
        self.assertFalse(profile.is_verified)
        self.assertFalse(profile.is_assignable)

    def test_verified_manufacturer_is_assignable_until_paused(self):

        manufacturer = User.objects.create_manufacturer(
            email="mfg@test.com",
            company_name="Tiruppur Knits",
            verified=True,
        )
        profile = ManufacturerProfile.objects.get(user=manufacturer)

        self.assertTrue(profile.is_assignable)
        self.assertIsNotNone(profile.verified_at)

        profile.pause("Machine maintenance")
        profile.refresh_from_db()
        self.assertFalse(profile.is_assignable)
        self.assertEqual(profile.pause_reason, "Machine maintenance")

        profile.resume()
        profile.refresh_from_db()
        self.assertTrue(profile.is_assignable)


class TestTokenAPI(APITestCase):

    def setUp(self):

        self.login_url = reverse("token-obtain")
        self.user_data = {
            "email": "user@test.com",
            "password": "StrongPass123!"
        }
        User.objects.create_user(**self.user_data)

    def test_jwt_login_success(self):

        response = self.client.post(self.login_url, self.user_data)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("access", response.data)
        self.assertIn("refresh", response.data)

    def test_jwt_login_wrong_password(self):

        response = self.client.post(self.login_url, {
            "email": "user@test.com",
            "password": "wrong"
        })

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
