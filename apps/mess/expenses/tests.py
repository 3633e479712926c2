import json
from datetime import date
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse

from apps.core.utils.exceptions import ConflictError, InvalidStateError
from apps.mess.budget.services import create_budget_cycle, finalize_budget_cycle, record_payment
from apps.mess.expenses.models import MiscellaneousExpense
from apps.mess.expenses.services import create_expense, delete_expense, update_expense


class MiscellaneousExpenseTests(TestCase):
    def setUp(self):
        self.user_model = get_user_model()
        self.manager = self.user_model.objects.create_user(
            username='manager',
            password='pass12345',
            role='mess_manager',
        )
        self.secretary = self.user_model.objects.create_user(
            username='secretary',
            password='pass12345',
            role='general_secretary',
        )
        self.boarder = self.user_model.objects.create_user(username='boarder', password='pass12345')
        self.august = create_budget_cycle(month=8, year=2026)
        self.september = create_budget_cycle(month=9, year=2026)

    def finalize_august(self):
        record_payment(user=self.boarder, cycle=self.august, amount_paid='3000.00')
        return finalize_budget_cycle(cycle_id=self.august.id)

    def send_json(self, method, url, payload=None):
        return getattr(self.client, method)(url, data=json.dumps(payload or {}), content_type='application/json')

    def test_create_expense_linked_to_open_cycle(self):
        expense = create_expense(
            description='Gas cylinder',
            amount=Decimal('950.00'),
            date=date(2026, 8, 4),
            budget_cycle_id=self.august.id,
            added_by=self.manager,
        )
        self.assertEqual(expense.budget_cycle, self.august)

    def test_expense_date_must_fall_in_linked_cycle(self):
        with self.assertRaises(InvalidStateError):
            create_expense(
                description='Gas cylinder',
                amount=Decimal('950.00'),
                date=date(2026, 9, 4),
                budget_cycle_id=self.august.id,
            )

    def test_cannot_add_expense_to_finalized_cycle(self):
        self.finalize_august()
        with self.assertRaises(ConflictError):
            create_expense(
                description='Late receipt',
                amount=Decimal('100.00'),
                date=date(2026, 8, 30),
                budget_cycle_id=self.august.id,
            )

    def test_expense_linked_by_finalize_is_locked(self):
        expense = create_expense(description='Broom', amount=Decimal('80.00'), date=date(2026, 8, 9))
        self.finalize_august()
        expense.refresh_from_db()

        self.assertTrue(expense.is_locked)
        with self.assertRaises(ConflictError):
            update_expense(expense=expense, amount=Decimal('10.00'))
        with self.assertRaises(ConflictError):
            delete_expense(expense=expense)
        self.assertTrue(MiscellaneousExpense.objects.filter(pk=expense.pk).exists())

    def test_open_expense_can_be_updated_and_deleted(self):
        expense = create_expense(description='Broom', amount=Decimal('80.00'), date=date(2026, 9, 9))

        expense = update_expense(expense=expense, amount=Decimal('95.00'), budget_cycle_id=self.september.id)
        self.assertEqual(expense.amount, Decimal('95.00'))
        self.assertEqual(expense.budget_cycle, self.september)

        delete_expense(expense=expense)
        self.assertFalse(MiscellaneousExpense.objects.exists())

    def test_list_filters_by_cycle_window_and_link(self):
        create_expense(description='In window', amount=Decimal('10.00'), date=date(2026, 8, 2))
        create_expense(
            description='Linked elsewhere',
            amount=Decimal('20.00'),
            date=date(2026, 9, 2),
            budget_cycle_id=self.september.id,
        )
        self.client.login(username='secretary', password='pass12345')

        response = self.client.get(reverse('misc_expense_list'), {'cycle': self.august.id})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row['description'] for row in response.json()['expenses']], ['In window'])

    def test_only_manager_creates_expense(self):
        payload = {'description': 'Soap', 'amount': '45.00', 'date': '2026-08-12'}
        self.client.login(username='secretary', password='pass12345')
        self.assertEqual(self.send_json('post', reverse('misc_expense_list'), payload).status_code, 403)

        self.client.login(username='boarder', password='pass12345')
        self.assertEqual(self.send_json('post', reverse('misc_expense_list'), payload).status_code, 403)

        self.client.login(username='manager', password='pass12345')
        response = self.send_json('post', reverse('misc_expense_list'), payload)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['amount'], '45.00')

    def test_non_positive_amount_returns_400(self):
        self.client.login(username='manager', password='pass12345')
        response = self.send_json('post', reverse('misc_expense_list'), {
            'description': 'Refund',
            'amount': '0',
            'date': '2026-08-12',
        })
        self.assertEqual(response.status_code, 400)

    def test_patch_and_delete_locked_expense_return_409(self):
        expense = create_expense(description='Broom', amount=Decimal('80.00'), date=date(2026, 8, 9))
        self.finalize_august()
        url = reverse('misc_expense_detail', args=[expense.id])
        self.client.login(username='manager', password='pass12345')

        self.assertEqual(self.send_json('patch', url, {'amount': '1.00'}).status_code, 409)
        self.assertEqual(self.client.delete(url).status_code, 409)

    def test_patch_updates_only_given_fields(self):
        expense = create_expense(description='Broom', amount=Decimal('80.00'), date=date(2026, 9, 9))
        self.client.login(username='manager', password='pass12345')

        response = self.send_json('patch', reverse('misc_expense_detail', args=[expense.id]), {'amount': '85.50'})

        self.assertEqual(response.status_code, 200)
        expense.refresh_from_db()
        self.assertEqual(expense.amount, Decimal('85.50'))
        self.assertEqual(expense.description, 'Broom')
