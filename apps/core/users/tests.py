import json
from datetime import date

from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from django.test import RequestFactory, TestCase
from django.urls import reverse

from apps.core.users.audit import log_audit_event
from apps.core.users.models import AuditLog
from apps.mess.marketing.services import assign_marketing_task


class AuthFlowTests(TestCase):
    def setUp(self):
        self.user_model = get_user_model()

    def post_json(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type='application/json')

    def test_register_creates_boarder(self):
        response = self.post_json(reverse('auth_register'), {
            'name': 'Asha Mehra',
            'email': 'Asha@Hostel.test',
            'password': 'longpassword',
            'room_number': 'B-204',
        })

        self.assertEqual(response.status_code, 201)
        user = self.user_model.objects.get(email='asha@hostel.test')
        self.assertEqual(user.role, 'boarder')
        self.assertEqual(user.first_name, 'Asha')
        self.assertEqual(user.last_name, 'Mehra')
        self.assertEqual(response.json()['room_number'], 'B-204')
        self.assertTrue(AuditLog.objects.filter(action='user.registered', user=user).exists())

    def test_register_duplicate_email_returns_409(self):
        payload = {'name': 'Asha', 'email': 'asha@hostel.test', 'password': 'longpassword'}
        self.assertEqual(self.post_json(reverse('auth_register'), payload).status_code, 201)
        self.assertEqual(self.post_json(reverse('auth_register'), payload).status_code, 409)

    def test_register_short_password_returns_400(self):
        response = self.post_json(reverse('auth_register'), {
            'name': 'Asha',
            'email': 'asha@hostel.test',
            'password': 'short',
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn('password', response.json()['details'])

    def test_login_me_logout(self):
        self.post_json(reverse('auth_register'), {
            'name': 'Asha',
            'email': 'asha@hostel.test',
            'password': 'longpassword',
        })

        self.assertEqual(self.client.get(reverse('user_me')).status_code, 401)
        bad = self.post_json(reverse('auth_login'), {'email': 'asha@hostel.test', 'password': 'wrongpassword'})
        self.assertEqual(bad.status_code, 401)

        response = self.post_json(reverse('auth_login'), {'email': 'asha@hostel.test', 'password': 'longpassword'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get(reverse('user_me')).json()['email'], 'asha@hostel.test')
        self.assertTrue(AuditLog.objects.filter(action='user.login').exists())

        self.assertEqual(self.client.post(reverse('auth_logout')).status_code, 200)
        self.assertEqual(self.client.get(reverse('user_me')).status_code, 401)


class RoleAccessTests(TestCase):
    def setUp(self):
        self.user_model = get_user_model()
        self.secretary = self.user_model.objects.create_user(
            username='secretary',
            password='pass12345',
            role='general_secretary',
        )
        self.manager = self.user_model.objects.create_user(
            username='manager',
            password='pass12345',
            role='mess_manager',
        )
        self.boarder = self.user_model.objects.create_user(
            username='boarder',
            password='pass12345',
        )

    def patch_role(self, user_id, role):
        return self.client.patch(
            reverse('user_assign_role', args=[user_id]),
            data=json.dumps({'role': role}),
            content_type='application/json',
        )

    def test_new_users_default_to_boarder(self):
        self.assertEqual(self.boarder.role, 'boarder')

    def test_superuser_is_always_general_secretary(self):
        admin = self.user_model.objects.create_superuser('root', 'root@hostel.test', 'pass12345')
        self.assertEqual(admin.role, 'general_secretary')

    def test_boarder_cannot_list_users(self):
        self.client.login(username='boarder', password='pass12345')
        self.assertEqual(self.client.get(reverse('user_list')).status_code, 403)

    def test_manager_lists_users_filtered_by_role(self):
        self.client.login(username='manager', password='pass12345')
        response = self.client.get(reverse('user_list'), {'role': 'boarder'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row['id'] for row in response.json()['users']], [self.boarder.id])

    def test_only_secretary_assigns_roles(self):
        self.client.login(username='manager', password='pass12345')
        self.assertEqual(self.patch_role(self.boarder.id, 'mess_manager').status_code, 403)

        self.client.login(username='secretary', password='pass12345')
        response = self.patch_role(self.boarder.id, 'mess_manager')
        self.assertEqual(response.status_code, 200)
        self.boarder.refresh_from_db()
        self.assertEqual(self.boarder.role, 'mess_manager')
        self.assertTrue(AuditLog.objects.filter(action='user.role_assigned', target_id=str(self.boarder.id)).exists())

    def test_assign_unknown_role_or_user(self):
        self.client.login(username='secretary', password='pass12345')
        self.assertEqual(self.patch_role(self.boarder.id, 'warden').status_code, 400)
        self.assertEqual(self.patch_role(9999, 'boarder').status_code, 404)

    def test_marketing_summary_counts_duties(self):
        other = self.user_model.objects.create_user(username='other', password='pass12345')
        assign_marketing_task(date=date(2026, 8, 1), student_ids=[self.boarder.id, other.id], money_given='500.00')
        self.client.login(username='secretary', password='pass12345')

        response = self.client.get(reverse('user_marketing_summary'))

        self.assertEqual(response.status_code, 200)
        counts = {row['user']['id']: row['marketing_task_count'] for row in response.json()['summary']}
        self.assertEqual(counts[self.boarder.id], 1)
        self.assertEqual(counts[self.manager.id], 0)


class AuditLogTests(TestCase):
    def test_anonymous_request_is_logged_without_user(self):
        request = RequestFactory().post('/budget/pay/')
        request.user = AnonymousUser()

        log_audit_event(request=request, action='budget.payment_made', details='Amount=3000')

        entry = AuditLog.objects.get(action='budget.payment_made')
        self.assertIsNone(entry.user)
        self.assertEqual(entry.method, 'POST')
        self.assertEqual(entry.path, '/budget/pay/')
