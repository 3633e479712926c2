import json
import threading
import time
from datetime import date
from decimal import Decimal
from unittest import mock

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase, override_settings
from django.urls import reverse
from django.utils import timezone

from apps.core.users.models import AuditLog
from apps.core.utils.exceptions import ConflictError, InvalidStateError, NotFoundError
from apps.mess.budget import services
from apps.mess.budget.models import BudgetCycle, Payment
from apps.mess.budget.services import (
    aggregate_cycle_expenditure,
    budget_overview,
    compute_per_head_cost,
    confirm_gateway_payment,
    create_budget_cycle,
    finalize_budget_cycle,
    pay_current_cycle,
    record_payment,
)
from apps.mess.expenses.models import MiscellaneousExpense, MiscellaneousExpenseQuerySet
from apps.mess.marketing.models import Bill, MarketingTask


def make_user(username, role, **extra):
    return get_user_model().objects.create_user(
        username=username,
        email=f'{username}@hostel.test',
        password='pass12345',
        role=role,
        **extra,
    )


def make_bill(submitted_by, task_date, total, status=MarketingTask.STATUS_BILL_SUBMITTED):
    task = MarketingTask.objects.create(date=task_date, money_given='1000.00', status=status)
    task.assigned_students.add(submitted_by)
    return Bill.objects.create(
        marketing_task=task,
        submitted_by=submitted_by,
        date=task_date,
        total_bill_amount=total,
        amount_given='1000.00',
    )


class BudgetCycleCreationTests(TestCase):
    def test_create_cycle_spans_calendar_month_with_default_deadline(self):
        cycle = create_budget_cycle(month=2, year=2028)

        self.assertEqual(cycle.start_date, date(2028, 2, 1))
        self.assertEqual(cycle.end_date, date(2028, 2, 29))
        self.assertEqual(cycle.payment_deadline, date(2028, 2, 6))
        self.assertFalse(cycle.is_finalized)
        self.assertIsNone(cycle.per_head_cost)
        self.assertEqual(cycle.label, 'February 2028')

    @override_settings(MESS_PAYMENT_DEADLINE_DAY=10)
    def test_deadline_day_comes_from_settings(self):
        cycle = create_budget_cycle(month=9, year=2026)
        self.assertEqual(cycle.payment_deadline, date(2026, 9, 10))

    def test_duplicate_month_is_rejected(self):
        create_budget_cycle(month=8, year=2026)
        with self.assertRaises(ConflictError):
            create_budget_cycle(month=8, year=2026)
        self.assertEqual(BudgetCycle.objects.count(), 1)

    def test_deadline_outside_month_is_rejected(self):
        with self.assertRaises(InvalidStateError):
            create_budget_cycle(month=8, year=2026, payment_deadline=date(2026, 9, 2))


class ExpenditureAggregationTests(TestCase):
    def setUp(self):
        self.manager = make_user('manager', 'mess_manager')
        self.boarder = make_user('boarder', 'boarder')
        self.cycle = create_budget_cycle(month=8, year=2026)

    def test_bills_and_unlinked_misc_in_window_are_summed(self):
        make_bill(self.boarder, date(2026, 8, 15), '500.00')
        MiscellaneousExpense.objects.create(description='Gas refill', amount='300.00', date=date(2026, 8, 20))

        totals = aggregate_cycle_expenditure(self.cycle)

        self.assertEqual(totals['bills_total'], Decimal('500.00'))
        self.assertEqual(totals['misc_total'], Decimal('300.00'))
        self.assertEqual(totals['total_expenditure'], Decimal('800.00'))

    def test_records_outside_window_are_ignored(self):
        make_bill(self.boarder, date(2026, 7, 31), '900.00')
        make_bill(self.boarder, date(2026, 9, 1), '900.00')
        MiscellaneousExpense.objects.create(description='July cleaning', amount='50.00', date=date(2026, 7, 31))

        totals = aggregate_cycle_expenditure(self.cycle)

        self.assertEqual(totals['total_expenditure'], Decimal('0.00'))

    def test_misc_linked_to_other_cycle_is_not_counted(self):
        other_cycle = create_budget_cycle(month=9, year=2026)
        MiscellaneousExpense.objects.create(
            description='Backdated utensils',
            amount='120.00',
            date=date(2026, 8, 10),
            budget_cycle=other_cycle,
        )
        MiscellaneousExpense.objects.create(
            description='Linked here',
            amount='80.00',
            date=date(2026, 9, 3),
            budget_cycle=self.cycle,
        )

        totals = aggregate_cycle_expenditure(self.cycle)

        self.assertEqual(totals['misc_total'], Decimal('80.00'))

    def test_bill_counts_even_when_task_not_completed(self):
        make_bill(self.boarder, date(2026, 8, 3), '250.00', status=MarketingTask.STATUS_BILL_SUBMITTED)
        make_bill(self.boarder, date(2026, 8, 4), '150.00', status=MarketingTask.STATUS_COMPLETED)

        totals = aggregate_cycle_expenditure(self.cycle)

        self.assertEqual(totals['bills_total'], Decimal('400.00'))


class PerHeadCostTests(TestCase):
    def test_even_split(self):
        self.assertEqual(compute_per_head_cost(Decimal('1500.00'), 2), Decimal('750.00'))

    def test_split_rounds_half_up_to_paise(self):
        self.assertEqual(compute_per_head_cost(Decimal('100.00'), 3), Decimal('33.33'))
        self.assertEqual(compute_per_head_cost(Decimal('0.05'), 2), Decimal('0.03'))

    def test_zero_students_is_rejected(self):
        with self.assertRaises(InvalidStateError):
            compute_per_head_cost(Decimal('100.00'), 0)

    def test_negative_total_is_rejected(self):
        with self.assertRaises(InvalidStateError):
            compute_per_head_cost(Decimal('-1.00'), 2)


class FinalizeBudgetCycleTests(TestCase):
    def setUp(self):
        self.manager = make_user('manager', 'mess_manager')
        self.asha = make_user('asha', 'boarder', first_name='Asha')
        self.ravi = make_user('ravi', 'boarder', first_name='Ravi')
        self.cycle = create_budget_cycle(month=8, year=2026)

    def test_finalize_splits_cost_and_sets_refunds(self):
        make_bill(self.asha, date(2026, 8, 15), '1000.00')
        make_bill(self.ravi, date(2026, 8, 16), '500.00')
        record_payment(user=self.asha, cycle=self.cycle, amount_paid='1000.00')
        record_payment(user=self.ravi, cycle=self.cycle, amount_paid='1000.00')

        cycle = finalize_budget_cycle(cycle_id=self.cycle.id, finalized_by=self.manager)

        self.assertTrue(cycle.is_finalized)
        self.assertEqual(cycle.total_expenditure, Decimal('1500.00'))
        self.assertEqual(cycle.per_head_cost, Decimal('750.00'))
        self.assertEqual(cycle.finalized_by, self.manager)
        self.assertIsNotNone(cycle.finalized_at)
        for payment in Payment.objects.filter(budget_cycle=cycle):
            self.assertEqual(payment.amount_returned, Decimal('250.00'))

    def test_finalize_links_unlinked_expenses_in_window(self):
        make_bill(self.asha, date(2026, 8, 15), '500.00')
        expense = MiscellaneousExpense.objects.create(description='Gas', amount='300.00', date=date(2026, 8, 20))
        outside = MiscellaneousExpense.objects.create(description='Sept gas', amount='40.00', date=date(2026, 9, 2))
        record_payment(user=self.asha, cycle=self.cycle, amount_paid='1000.00')
        record_payment(user=self.ravi, cycle=self.cycle, amount_paid='1000.00')

        cycle = finalize_budget_cycle(cycle_id=self.cycle.id)

        self.assertEqual(cycle.total_expenditure, Decimal('800.00'))
        self.assertEqual(cycle.per_head_cost, Decimal('400.00'))
        expense.refresh_from_db()
        outside.refresh_from_db()
        self.assertEqual(expense.budget_cycle_id, cycle.id)
        self.assertIsNone(outside.budget_cycle_id)

    def test_overspend_produces_negative_return(self):
        make_bill(self.asha, date(2026, 8, 15), '3000.00')
        record_payment(user=self.asha, cycle=self.cycle, amount_paid='1000.00')
        record_payment(user=self.ravi, cycle=self.cycle, amount_paid='1000.00')

        finalize_budget_cycle(cycle_id=self.cycle.id)

        payment = Payment.objects.get(user=self.asha, budget_cycle=self.cycle)
        self.assertEqual(payment.amount_returned, Decimal('-500.00'))

    def test_zero_payments_leaves_cycle_untouched(self):
        expense = MiscellaneousExpense.objects.create(description='Gas', amount='300.00', date=date(2026, 8, 20))

        with self.assertRaises(InvalidStateError):
            finalize_budget_cycle(cycle_id=self.cycle.id)

        self.cycle.refresh_from_db()
        expense.refresh_from_db()
        self.assertFalse(self.cycle.is_finalized)
        self.assertIsNone(self.cycle.total_expenditure)
        self.assertIsNone(self.cycle.per_head_cost)
        self.assertIsNone(expense.budget_cycle_id)

    def test_second_finalize_is_conflict_and_keeps_numbers(self):
        record_payment(user=self.asha, cycle=self.cycle, amount_paid='1000.00')
        finalize_budget_cycle(cycle_id=self.cycle.id)
        make_bill(self.asha, date(2026, 8, 25), '999.00')

        with self.assertRaises(ConflictError):
            finalize_budget_cycle(cycle_id=self.cycle.id)

        self.cycle.refresh_from_db()
        self.assertEqual(self.cycle.total_expenditure, Decimal('0.00'))
        self.assertEqual(self.cycle.per_head_cost, Decimal('0.00'))

    def test_unknown_cycle_is_not_found(self):
        with self.assertRaises(NotFoundError):
            finalize_budget_cycle(cycle_id=9999)

    def test_finalized_cycle_numbers_cannot_be_edited_or_deleted(self):
        record_payment(user=self.asha, cycle=self.cycle, amount_paid='1000.00')
        cycle = finalize_budget_cycle(cycle_id=self.cycle.id)

        cycle.per_head_cost = Decimal('1.00')
        with self.assertRaises(ValidationError):
            cycle.save()
        with self.assertRaises(ValidationError):
            BudgetCycle.objects.get(pk=cycle.pk).delete()

    def test_failure_while_linking_expenses_rolls_back_everything(self):
        make_bill(self.asha, date(2026, 8, 15), '500.00')
        expense = MiscellaneousExpense.objects.create(description='Gas', amount='300.00', date=date(2026, 8, 20))
        record_payment(user=self.asha, cycle=self.cycle, amount_paid='1000.00')
        record_payment(user=self.ravi, cycle=self.cycle, amount_paid='1000.00')

        with mock.patch.object(MiscellaneousExpenseQuerySet, 'update', side_effect=DatabaseError('disk full')):
            with self.assertRaises(DatabaseError):
                finalize_budget_cycle(cycle_id=self.cycle.id, finalized_by=self.manager)

        self.cycle.refresh_from_db()
        expense.refresh_from_db()
        self.assertFalse(self.cycle.is_finalized)
        self.assertIsNone(self.cycle.total_expenditure)
        self.assertIsNone(self.cycle.per_head_cost)
        self.assertIsNone(self.cycle.finalized_at)
        self.assertEqual(
            list(Payment.objects.filter(budget_cycle=self.cycle).values_list('amount_returned', flat=True)),
            [None, None],
        )
        self.assertIsNone(expense.budget_cycle_id)

        cycle = finalize_budget_cycle(cycle_id=self.cycle.id, finalized_by=self.manager)
        self.assertEqual(cycle.per_head_cost, Decimal('400.00'))

    def test_finalize_keeps_expense_linked_to_other_cycle(self):
        september = create_budget_cycle(month=9, year=2026)
        backdated = MiscellaneousExpense.objects.create(
            description='Backdated utensils',
            amount='120.00',
            date=date(2026, 8, 10),
            budget_cycle=september,
        )
        record_payment(user=self.asha, cycle=self.cycle, amount_paid='1000.00')

        cycle = finalize_budget_cycle(cycle_id=self.cycle.id)

        backdated.refresh_from_db()
        self.assertEqual(backdated.budget_cycle_id, september.id)
        self.assertEqual(cycle.total_expenditure, Decimal('0.00'))

    def test_overview_lists_every_boarder_with_refunds_after_finalize(self):
        make_bill(self.asha, date(2026, 8, 15), '600.00')
        record_payment(user=self.asha, cycle=self.cycle, amount_paid='1000.00')

        rows_before = {row['user'].id: row for row in budget_overview(self.cycle)}
        self.assertEqual(set(rows_before), {self.asha.id, self.ravi.id})
        self.assertIsNone(rows_before[self.asha.id]['amount_to_be_returned'])

        finalize_budget_cycle(cycle_id=self.cycle.id)
        self.cycle.refresh_from_db()
        rows = {row['user'].id: row for row in budget_overview(self.cycle)}

        self.assertEqual(rows[self.asha.id]['amount_to_be_returned'], Decimal('400.00'))
        self.assertEqual(rows[self.ravi.id]['amount_paid'], Decimal('0.00'))
        self.assertEqual(rows[self.ravi.id]['amount_to_be_returned'], Decimal('-600.00'))


class PaymentRecordingTests(TestCase):
    def setUp(self):
        self.boarder = make_user('boarder', 'boarder')
        self.cycle = create_budget_cycle(month=8, year=2026)

    def test_duplicate_payment_is_conflict(self):
        record_payment(user=self.boarder, cycle=self.cycle, amount_paid='3000.00')
        with self.assertRaises(ConflictError):
            record_payment(user=self.boarder, cycle=self.cycle, amount_paid='3000.00')
        self.assertEqual(Payment.objects.filter(user=self.boarder).count(), 1)

    def test_non_positive_amount_is_rejected(self):
        with self.assertRaises(InvalidStateError):
            record_payment(user=self.boarder, cycle=self.cycle, amount_paid='0')

    def test_payment_into_finalized_cycle_is_rejected(self):
        other = make_user('other', 'boarder')
        record_payment(user=other, cycle=self.cycle, amount_paid='3000.00')
        finalize_budget_cycle(cycle_id=self.cycle.id)

        with self.assertRaises(ConflictError):
            record_payment(user=self.boarder, cycle=self.cycle, amount_paid='3000.00')

    def test_payments_cannot_be_deleted(self):
        payment = record_payment(user=self.boarder, cycle=self.cycle, amount_paid='3000.00')
        with self.assertRaises(ValidationError):
            payment.delete()

    def test_payment_amount_cannot_be_changed(self):
        payment = record_payment(user=self.boarder, cycle=self.cycle, amount_paid='3000.00')

        payment.amount_paid = Decimal('5000.00')
        with self.assertRaises(ValidationError):
            payment.save()

        payment.refresh_from_db()
        self.assertEqual(payment.amount_paid, Decimal('3000.00'))

    def test_payment_cannot_move_to_another_cycle(self):
        payment = record_payment(user=self.boarder, cycle=self.cycle, amount_paid='3000.00')
        payment.budget_cycle = create_budget_cycle(month=9, year=2026)
        with self.assertRaises(ValidationError):
            payment.save()

    def test_payment_cannot_be_created_directly_in_finalized_cycle(self):
        other = make_user('other', 'boarder')
        record_payment(user=other, cycle=self.cycle, amount_paid='3000.00')
        finalize_budget_cycle(cycle_id=self.cycle.id)

        with self.assertRaises(ValidationError):
            Payment.objects.create(user=self.boarder, budget_cycle=self.cycle, amount_paid='3000.00')
        self.assertFalse(Payment.objects.filter(user=self.boarder).exists())

    def test_settled_refund_cannot_be_changed(self):
        record_payment(user=self.boarder, cycle=self.cycle, amount_paid='3000.00')
        finalize_budget_cycle(cycle_id=self.cycle.id)
        payment = Payment.objects.get(user=self.boarder, budget_cycle=self.cycle)

        payment.amount_returned = Decimal('0.00')
        with self.assertRaises(ValidationError):
            payment.save()

        payment.refresh_from_db()
        self.assertEqual(payment.amount_returned, Decimal('3000.00'))

    def test_reference_can_still_be_attached_after_finalize(self):
        record_payment(user=self.boarder, cycle=self.cycle, amount_paid='3000.00')
        finalize_budget_cycle(cycle_id=self.cycle.id)
        payment = Payment.objects.get(user=self.boarder, budget_cycle=self.cycle)

        payment.reference = 'CASH-9'
        payment.save(update_fields=['reference', 'updated_at'])

        payment.refresh_from_db()
        self.assertEqual(payment.reference, 'CASH-9')

    def test_pay_current_cycle_uses_configured_fee(self):
        payment = pay_current_cycle(user=self.boarder, today=date(2026, 8, 3))
        self.assertEqual(payment.amount_paid, Decimal('3000.00'))
        self.assertEqual(payment.budget_cycle, self.cycle)

    def test_pay_after_deadline_is_rejected(self):
        with self.assertRaises(InvalidStateError):
            pay_current_cycle(user=self.boarder, today=date(2026, 8, 7))

    def test_pay_without_current_cycle_is_not_found(self):
        with self.assertRaises(NotFoundError):
            pay_current_cycle(user=self.boarder, today=date(2026, 10, 2))

    def test_gateway_confirmation_is_idempotent_per_reference(self):
        first = confirm_gateway_payment(
            user_id=self.boarder.id,
            cycle_id=self.cycle.id,
            amount_paid='3000.00',
            reference='pi_123',
        )
        again = confirm_gateway_payment(
            user_id=self.boarder.id,
            cycle_id=self.cycle.id,
            amount_paid='3000.00',
            reference='pi_123',
        )

        self.assertEqual(first.pk, again.pk)
        self.assertEqual(Payment.objects.filter(user=self.boarder).count(), 1)
        with self.assertRaises(ConflictError):
            confirm_gateway_payment(
                user_id=self.boarder.id,
                cycle_id=self.cycle.id,
                amount_paid='3000.00',
                reference='pi_other',
            )


class BudgetViewTests(TestCase):
    def setUp(self):
        self.secretary = make_user('secretary', 'general_secretary')
        self.manager = make_user('manager', 'mess_manager')
        self.boarder = make_user('boarder', 'boarder', first_name='Asha')
        today = timezone.localdate()
        self.cycle = create_budget_cycle(month=8, year=2026)
        self.current = BudgetCycle.objects.for_month(today.month, today.year).first() or create_budget_cycle(
            month=today.month,
            year=today.year,
            payment_deadline=today,
        )

    def post_json(self, url, payload=None):
        return self.client.post(url, data=json.dumps(payload or {}), content_type='application/json')

    def test_finalize_requires_login(self):
        response = self.post_json(reverse('budget_cycle_finalize', args=[self.cycle.id]))
        self.assertEqual(response.status_code, 401)

    def test_boarder_and_secretary_cannot_finalize(self):
        for username in ('boarder', 'secretary'):
            self.client.login(username=username, password='pass12345')
            response = self.post_json(reverse('budget_cycle_finalize', args=[self.cycle.id]))
            self.assertEqual(response.status_code, 403)
        self.cycle.refresh_from_db()
        self.assertFalse(self.cycle.is_finalized)

    def test_manager_finalizes_and_audit_is_written(self):
        record_payment(user=self.boarder, cycle=self.cycle, amount_paid='1000.00')
        self.client.login(username='manager', password='pass12345')

        response = self.post_json(reverse('budget_cycle_finalize', args=[self.cycle.id]))

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload['is_finalized'])
        self.assertEqual(payload['per_head_cost'], '0.00')
        self.assertEqual(payload['payments'][0]['amount_returned'], '1000.00')
        self.assertTrue(AuditLog.objects.filter(action='budget.cycle_finalized', user=self.manager).exists())

        response = self.post_json(reverse('budget_cycle_finalize', args=[self.cycle.id]))
        self.assertEqual(response.status_code, 409)

    def test_finalize_without_payments_returns_400(self):
        self.client.login(username='manager', password='pass12345')
        response = self.post_json(reverse('budget_cycle_finalize', args=[self.cycle.id]))
        self.assertEqual(response.status_code, 400)
        self.assertIn('error', response.json())

    def test_finalize_unknown_cycle_returns_404(self):
        self.client.login(username='manager', password='pass12345')
        response = self.post_json(reverse('budget_cycle_finalize', args=[9999]))
        self.assertEqual(response.status_code, 404)

    def test_manager_creates_cycle_and_duplicate_conflicts(self):
        self.client.login(username='manager', password='pass12345')

        response = self.post_json(reverse('budget_cycle_list'), {'month': 11, 'year': 2030})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['start_date'], '2030-11-01')

        response = self.post_json(reverse('budget_cycle_list'), {'month': 11, 'year': 2030})
        self.assertEqual(response.status_code, 409)

    def test_invalid_cycle_body_returns_400(self):
        self.client.login(username='secretary', password='pass12345')
        response = self.post_json(reverse('budget_cycle_list'), {'month': 13, 'year': 2030})
        self.assertEqual(response.status_code, 400)
        self.assertIn('month', response.json()['details'])

    def test_malformed_json_returns_400(self):
        self.client.login(username='manager', password='pass12345')
        response = self.client.post(reverse('budget_cycle_list'), data='{nope', content_type='application/json')
        self.assertEqual(response.status_code, 400)

    def test_boarder_pays_once_for_current_cycle(self):
        self.client.login(username='boarder', password='pass12345')

        response = self.post_json(reverse('budget_pay'))
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['budget_cycle_id'], self.current.id)

        response = self.post_json(reverse('budget_pay'))
        self.assertEqual(response.status_code, 409)

    def test_manager_records_payment_for_boarder(self):
        self.client.login(username='manager', password='pass12345')
        response = self.post_json(
            reverse('budget_cycle_record_payment', args=[self.cycle.id]),
            {'user': self.boarder.id, 'amount_paid': '2500.00', 'reference': 'CASH-1'},
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(Payment.objects.get(user=self.boarder, budget_cycle=self.cycle).reference, 'CASH-1')

    def test_my_status_reports_refund_after_finalize(self):
        record_payment(user=self.boarder, cycle=self.cycle, amount_paid='1000.00')
        make_bill(self.boarder, date(2026, 8, 12), '400.00')
        finalize_budget_cycle(cycle_id=self.cycle.id)
        self.client.login(username='boarder', password='pass12345')

        response = self.client.get(reverse('budget_my_status'), {'cycle': self.cycle.id})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload['has_paid'])
        self.assertEqual(payload['per_head_cost'], '400.00')
        self.assertEqual(payload['refund_or_due'], '600.00')

    def test_overview_is_admin_only(self):
        self.client.login(username='boarder', password='pass12345')
        self.assertEqual(self.client.get(reverse('budget_overview')).status_code, 403)

        self.client.login(username='secretary', password='pass12345')
        response = self.client.get(reverse('budget_overview'), {'cycle': self.cycle.id})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row['user_id'] for row in response.json()['rows']], [self.boarder.id])

    def test_settlement_statement_pdf_for_own_payment(self):
        record_payment(user=self.boarder, cycle=self.cycle, amount_paid='1000.00')
        finalize_budget_cycle(cycle_id=self.cycle.id)
        self.client.login(username='boarder', password='pass12345')

        response = self.client.get(reverse('budget_settlement_statement', args=[self.cycle.id]))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/pdf')
        self.assertTrue(response.content.startswith(b'%PDF'))

    def test_boarder_cannot_read_other_statement(self):
        other = make_user('other', 'boarder')
        record_payment(user=other, cycle=self.cycle, amount_paid='1000.00')
        self.client.login(username='boarder', password='pass12345')

        response = self.client.get(
            reverse('budget_settlement_statement', args=[self.cycle.id]),
            {'user': other.id},
        )
        self.assertEqual(response.status_code, 403)

    def test_payment_confirmation_is_manager_only(self):
        payload = {
            'user_id': self.boarder.id,
            'budget_cycle_id': self.cycle.id,
            'amount_paid': '3000.00',
            'reference': 'pi_abc',
        }
        self.client.login(username='boarder', password='pass12345')
        self.assertEqual(self.post_json(reverse('budget_payment_confirmation'), payload).status_code, 403)

        self.client.login(username='manager', password='pass12345')
        response = self.post_json(reverse('budget_payment_confirmation'), payload)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['reference'], 'pi_abc')

    def test_cycle_list_filters_by_state(self):
        record_payment(user=self.boarder, cycle=self.cycle, amount_paid='1000.00')
        finalize_budget_cycle(cycle_id=self.cycle.id)
        self.client.login(username='secretary', password='pass12345')

        finalized = self.client.get(reverse('budget_cycle_list'), {'state': 'finalized'}).json()['cycles']
        open_cycles = self.client.get(reverse('budget_cycle_list'), {'state': 'open'}).json()['cycles']

        self.assertEqual([cycle['id'] for cycle in finalized], [self.cycle.id])
        self.assertNotIn(self.cycle.id, [cycle['id'] for cycle in open_cycles])


class PaymentAdminTests(TestCase):
    def setUp(self):
        get_user_model().objects.create_superuser('root', 'root@hostel.test', 'pass12345')
        self.boarder = make_user('boarder', 'boarder')
        self.late = make_user('late', 'boarder')
        self.cycle = create_budget_cycle(month=8, year=2026)
        self.payment = record_payment(user=self.boarder, cycle=self.cycle, amount_paid='1000.00')
        self.client.login(username='root', password='pass12345')

    def test_change_form_does_not_edit_amount_or_owner(self):
        response = self.client.post(
            reverse('admin:budget_payment_change', args=[self.payment.id]),
            {
                'user': self.late.id,
                'budget_cycle': self.cycle.id,
                'amount_paid': '5000.00',
                'reference': 'CASH-2',
                'recorded_by': '',
            },
        )

        self.assertEqual(response.status_code, 302)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.amount_paid, Decimal('1000.00'))
        self.assertEqual(self.payment.user, self.boarder)
        self.assertEqual(self.payment.reference, 'CASH-2')

    def test_add_form_rejects_finalized_cycle(self):
        finalize_budget_cycle(cycle_id=self.cycle.id)

        response = self.client.post(
            reverse('admin:budget_payment_add'),
            {
                'user': self.late.id,
                'budget_cycle': self.cycle.id,
                'amount_paid': '1000.00',
                'reference': '',
                'recorded_by': '',
            },
        )

        self.assertEqual(response.status_code, 200)
        self.assertFalse(Payment.objects.filter(user=self.late).exists())

    def test_finalized_cycle_inline_is_read_only(self):
        finalize_budget_cycle(cycle_id=self.cycle.id)

        response = self.client.get(reverse('admin:budget_budgetcycle_change', args=[self.cycle.id]))

        self.assertEqual(response.status_code, 200)
        self.assertNotContains(response, 'name="payments-0-amount_paid"')
        self.assertFalse(response.context['inline_admin_formsets'][0].has_add_permission)


class ConcurrentSettlementTests(TransactionTestCase):
    """Runs two writers on separate connections against the file test database."""

    def setUp(self):
        self.manager = make_user('manager', 'mess_manager')
        self.asha = make_user('asha', 'boarder')
        self.ravi = make_user('ravi', 'boarder')
        self.cycle = create_budget_cycle(month=8, year=2026)

    def run_together(self, func):
        outcomes = []
        start = threading.Barrier(2)

        def worker():
            try:
                start.wait()
                func()
                outcomes.append('ok')
            except Exception as exc:
                outcomes.append(type(exc).__name__)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return sorted(outcomes)

    def test_concurrent_finalize_has_one_winner(self):
        record_payment(user=self.asha, cycle=self.cycle, amount_paid='1000.00')
        record_payment(user=self.ravi, cycle=self.cycle, amount_paid='1000.00')
        make_bill(self.asha, date(2026, 8, 15), '500.00')
        aggregate = services.aggregate_cycle_expenditure

        def slow_aggregate(cycle):
            totals = aggregate(cycle)
            time.sleep(0.2)
            return totals

        with mock.patch.object(services, 'aggregate_cycle_expenditure', side_effect=slow_aggregate):
            outcomes = self.run_together(
                lambda: finalize_budget_cycle(cycle_id=self.cycle.id, finalized_by=self.manager)
            )

        self.assertEqual(outcomes, ['ConflictError', 'ok'])
        self.cycle.refresh_from_db()
        self.assertTrue(self.cycle.is_finalized)
        self.assertEqual(self.cycle.per_head_cost, Decimal('250.00'))
        for payment in Payment.objects.filter(budget_cycle=self.cycle):
            self.assertEqual(payment.amount_returned, Decimal('750.00'))

    def test_concurrent_duplicate_payment_has_one_winner(self):
        save = Payment.save

        def slow_save(payment, *args, **kwargs):
            save(payment, *args, **kwargs)
            time.sleep(0.2)

        with mock.patch.object(Payment, 'save', autospec=True, side_effect=slow_save):
            outcomes = self.run_together(
                lambda: record_payment(user=self.asha, cycle=self.cycle, amount_paid='3000.00')
            )

        self.assertEqual(outcomes, ['ConflictError', 'ok'])
        self.assertEqual(Payment.objects.filter(user=self.asha, budget_cycle=self.cycle).count(), 1)
