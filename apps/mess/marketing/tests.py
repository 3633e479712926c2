import json
from datetime import date
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.core.exceptions import PermissionDenied, ValidationError
from django.test import TestCase
from django.urls import reverse

from apps.core.utils.exceptions import ConflictError, InvalidStateError, NotFoundError
from apps.mess.budget.services import create_budget_cycle, finalize_budget_cycle, record_payment
from apps.mess.marketing.models import Bill, BillItem, MarketingTask
from apps.mess.marketing.services import (
    assign_marketing_task,
    complete_marketing_task,
    delete_marketing_task,
    marketing_duty_summary,
    submit_bill,
    update_marketing_task,
)


class MarketingServiceTests(TestCase):
    def setUp(self):
        self.user_model = get_user_model()
        self.manager = self.user_model.objects.create_user(
            username='manager',
            password='pass12345',
            role='mess_manager',
        )
        self.asha = self.user_model.objects.create_user(username='asha', password='pass12345', first_name='Asha')
        self.ravi = self.user_model.objects.create_user(username='ravi', password='pass12345', first_name='Ravi')
        self.meera = self.user_model.objects.create_user(username='meera', password='pass12345', first_name='Meera')

    def assign(self, task_date=date(2026, 8, 15), money_given='2000.00'):
        return assign_marketing_task(
            date=task_date,
            student_ids=[self.asha.id, self.ravi.id],
            money_given=money_given,
            created_by=self.manager,
        )

    def submit(self, task, user=None, **overrides):
        data = {
            'date': task.date,
            'total_bill_amount': '1800.00',
            'amount_given': '2000.00',
            'marketing_total': '1200.00',
            'grocery_total': '600.00',
        }
        data.update(overrides)
        return submit_bill(task=task, submitted_by=user or self.asha, **data)

    def test_assign_requires_exactly_two_distinct_students(self):
        with self.assertRaises(InvalidStateError):
            assign_marketing_task(date=date(2026, 8, 15), student_ids=[self.asha.id], money_given='100.00')
        with self.assertRaises(InvalidStateError):
            assign_marketing_task(
                date=date(2026, 8, 15),
                student_ids=[self.asha.id, self.asha.id],
                money_given='100.00',
            )
        with self.assertRaises(InvalidStateError):
            assign_marketing_task(
                date=date(2026, 8, 15),
                student_ids=[self.asha.id, self.ravi.id, self.meera.id],
                money_given='100.00',
            )
        self.assertFalse(MarketingTask.objects.exists())

    def test_assign_rejects_unknown_student(self):
        with self.assertRaises(NotFoundError):
            assign_marketing_task(date=date(2026, 8, 15), student_ids=[self.asha.id, 9999], money_given='100.00')

    def test_one_task_per_date(self):
        task = self.assign()
        self.assertEqual(task.status, MarketingTask.STATUS_ASSIGNED)
        self.assertEqual(set(task.assigned_students.values_list('id', flat=True)), {self.asha.id, self.ravi.id})

        with self.assertRaises(ConflictError):
            self.assign()

    def test_update_and_delete_only_while_assigned(self):
        task = self.assign()
        task = update_marketing_task(task=task, money_given='2500.00')
        self.assertEqual(task.money_given, Decimal('2500.00'))

        self.submit(task)
        task.refresh_from_db()
        with self.assertRaises(InvalidStateError):
            update_marketing_task(task=task, money_given='3000.00')
        with self.assertRaises(InvalidStateError):
            delete_marketing_task(task=task)

    def test_delete_assigned_task(self):
        task = self.assign()
        delete_marketing_task(task=task)
        self.assertFalse(MarketingTask.objects.filter(pk=task.pk).exists())

    def test_submit_bill_moves_task_forward_and_derives_return(self):
        task = self.assign()

        bill = self.submit(task, items=[
            {'item_code': 'rice', 'label': 'Rice', 'amount': Decimal('900.00')},
            {'item_code': 'dal', 'label': 'Dal', 'amount': Decimal('300.00')},
        ])

        task.refresh_from_db()
        self.assertEqual(task.status, MarketingTask.STATUS_BILL_SUBMITTED)
        self.assertEqual(bill.money_returned, Decimal('200.00'))
        self.assertEqual(BillItem.objects.filter(bill=bill).count(), 2)

    def test_second_bill_for_task_is_conflict(self):
        task = self.assign()
        self.submit(task)
        with self.assertRaises(ConflictError):
            self.submit(task, user=self.ravi)
        self.assertEqual(Bill.objects.count(), 1)

    def test_unassigned_boarder_cannot_submit_bill(self):
        task = self.assign()
        with self.assertRaises(PermissionDenied):
            self.submit(task, user=self.meera)

    def test_negative_bill_amount_is_rejected(self):
        task = self.assign()
        with self.assertRaises(InvalidStateError):
            self.submit(task, total_bill_amount='-5.00')

    def test_submitted_bill_is_immutable(self):
        task = self.assign()
        bill = self.submit(task)

        bill.total_bill_amount = Decimal('1.00')
        with self.assertRaises(ValidationError):
            bill.save()
        with self.assertRaises(ValidationError):
            bill.delete()

    def test_complete_requires_bill_and_returned_money(self):
        task = self.assign()
        with self.assertRaises(InvalidStateError):
            complete_marketing_task(task=task, money_return_received=True)

        self.submit(task)
        with self.assertRaises(InvalidStateError):
            complete_marketing_task(task=task, money_return_received=False)

        task = complete_marketing_task(task=task, money_return_received=True)
        self.assertEqual(task.status, MarketingTask.STATUS_COMPLETED)
        self.assertIsNotNone(task.completed_at)

        with self.assertRaises(ConflictError):
            complete_marketing_task(task=task, money_return_received=True)

    def finalize_august(self):
        august = create_budget_cycle(month=8, year=2026)
        record_payment(user=self.meera, cycle=august, amount_paid='2000.00')
        return finalize_budget_cycle(cycle_id=august.id)

    def test_assign_into_finalized_cycle_is_conflict(self):
        self.finalize_august()

        with self.assertRaises(ConflictError):
            self.assign(task_date=date(2026, 8, 20))
        self.assertFalse(MarketingTask.objects.exists())

        task = self.assign(task_date=date(2026, 9, 1))
        self.assertEqual(task.status, MarketingTask.STATUS_ASSIGNED)

    def test_bill_for_task_in_finalized_cycle_is_conflict(self):
        task = self.assign(task_date=date(2026, 8, 15))
        cycle = self.finalize_august()

        with self.assertRaises(ConflictError):
            self.submit(task)

        task.refresh_from_db()
        self.assertEqual(task.status, MarketingTask.STATUS_ASSIGNED)
        self.assertFalse(Bill.objects.exists())
        cycle.refresh_from_db()
        self.assertEqual(cycle.total_expenditure, Decimal('0.00'))

    def test_bill_dated_into_finalized_cycle_is_conflict(self):
        self.finalize_august()
        task = self.assign(task_date=date(2026, 9, 1))

        with self.assertRaises(ConflictError):
            self.submit(task, date=date(2026, 8, 31))
        self.assertFalse(Bill.objects.exists())

    def test_duty_summary_counts_assignments(self):
        self.assign(task_date=date(2026, 8, 1))
        assign_marketing_task(
            date=date(2026, 8, 2),
            student_ids=[self.asha.id, self.meera.id],
            money_given='500.00',
        )

        counts = {user.username: user.marketing_task_count for user in marketing_duty_summary()}

        self.assertEqual(counts['asha'], 2)
        self.assertEqual(counts['ravi'], 1)
        self.assertEqual(counts['meera'], 1)
        self.assertEqual(counts['manager'], 0)


class MarketingViewTests(TestCase):
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
        self.asha = self.user_model.objects.create_user(username='asha', password='pass12345')
        self.ravi = self.user_model.objects.create_user(username='ravi', password='pass12345')
        self.meera = self.user_model.objects.create_user(username='meera', password='pass12345')
        self.task = assign_marketing_task(
            date=date(2026, 8, 15),
            student_ids=[self.asha.id, self.ravi.id],
            money_given='2000.00',
        )

    def send_json(self, method, url, payload=None):
        return getattr(self.client, method)(url, data=json.dumps(payload or {}), content_type='application/json')

    def bill_payload(self):
        return {
            'date': '2026-08-15',
            'total_bill_amount': '1750.00',
            'amount_given': '2000.00',
            'marketing_total': '1000.00',
            'grocery_total': '750.00',
            'description': 'Vegetables and rice',
            'items': [{'item_code': 'veg', 'label': 'Vegetables', 'amount': '1000.00'}],
        }

    def test_manager_assigns_task(self):
        self.client.login(username='manager', password='pass12345')
        response = self.send_json('post', reverse('marketing_task_assign'), {
            'date': '2026-08-16',
            'student_ids': [self.asha.id, self.meera.id],
            'money_given': '1500.00',
        })

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['status'], 'ASSIGNED')
        self.assertEqual(len(response.json()['assigned_students']), 2)

    def test_assign_with_one_student_returns_400(self):
        self.client.login(username='manager', password='pass12345')
        response = self.send_json('post', reverse('marketing_task_assign'), {
            'date': '2026-08-16',
            'student_ids': [self.asha.id],
            'money_given': '1500.00',
        })
        self.assertEqual(response.status_code, 400)

    def test_assign_same_date_returns_409(self):
        self.client.login(username='manager', password='pass12345')
        response = self.send_json('post', reverse('marketing_task_assign'), {
            'date': '2026-08-15',
            'student_ids': [self.asha.id, self.meera.id],
            'money_given': '1500.00',
        })
        self.assertEqual(response.status_code, 409)

    def test_boarder_cannot_assign(self):
        self.client.login(username='asha', password='pass12345')
        response = self.send_json('post', reverse('marketing_task_assign'), {})
        self.assertEqual(response.status_code, 403)

    def test_my_tasks_only_lists_own_assignments(self):
        self.client.login(username='meera', password='pass12345')
        self.assertEqual(self.client.get(reverse('marketing_my_tasks')).json()['tasks'], [])

        self.client.login(username='asha', password='pass12345')
        tasks = self.client.get(reverse('marketing_my_tasks')).json()['tasks']
        self.assertEqual([task['id'] for task in tasks], [self.task.id])

    def test_task_detail_visibility(self):
        self.client.login(username='meera', password='pass12345')
        self.assertEqual(self.client.get(reverse('marketing_task_detail', args=[self.task.id])).status_code, 403)

        self.client.login(username='ravi', password='pass12345')
        self.assertEqual(self.client.get(reverse('marketing_task_detail', args=[self.task.id])).status_code, 200)

        self.client.login(username='secretary', password='pass12345')
        self.assertEqual(self.client.get(reverse('marketing_task_detail', args=[self.task.id])).status_code, 200)

    def test_only_manager_updates_or_deletes_task(self):
        url = reverse('marketing_task_detail', args=[self.task.id])
        self.client.login(username='asha', password='pass12345')
        self.assertEqual(self.send_json('patch', url, {'money_given': '10.00'}).status_code, 403)

        self.client.login(username='manager', password='pass12345')
        response = self.send_json('patch', url, {'money_given': '2200.00'})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['money_given'], '2200.00')

        self.assertEqual(self.client.delete(url).status_code, 200)
        self.assertFalse(MarketingTask.objects.filter(pk=self.task.pk).exists())

    def test_assigned_boarder_submits_bill_and_manager_completes(self):
        self.client.login(username='asha', password='pass12345')
        response = self.send_json('post', reverse('marketing_task_bill', args=[self.task.id]), self.bill_payload())

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['money_returned'], '250.00')
        self.assertEqual(len(response.json()['items']), 1)

        response = self.send_json('post', reverse('marketing_task_bill', args=[self.task.id]), self.bill_payload())
        self.assertEqual(response.status_code, 409)

        self.client.login(username='manager', password='pass12345')
        complete_url = reverse('marketing_task_complete', args=[self.task.id])
        self.assertEqual(self.send_json('patch', complete_url, {'money_return_received': False}).status_code, 400)
        response = self.send_json('patch', complete_url, {'money_return_received': True})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'COMPLETED')

    def test_unassigned_boarder_cannot_submit_bill(self):
        self.client.login(username='meera', password='pass12345')
        response = self.send_json('post', reverse('marketing_task_bill', args=[self.task.id]), self.bill_payload())
        self.assertEqual(response.status_code, 403)
        self.assertFalse(Bill.objects.exists())

    def test_bill_with_invalid_item_returns_400(self):
        payload = self.bill_payload()
        payload['items'] = [{'item_code': 'veg', 'label': 'Vegetables', 'amount': '-1'}]
        self.client.login(username='asha', password='pass12345')
        response = self.send_json('post', reverse('marketing_task_bill', args=[self.task.id]), payload)
        self.assertEqual(response.status_code, 400)

    def test_bill_listing_and_detail_access(self):
        self.client.login(username='asha', password='pass12345')
        bill_id = self.send_json(
            'post',
            reverse('marketing_task_bill', args=[self.task.id]),
            self.bill_payload(),
        ).json()['id']

        self.assertEqual(self.client.get(reverse('bill_list')).status_code, 403)
        self.assertEqual(self.client.get(reverse('bill_detail', args=[bill_id])).status_code, 200)

        self.client.login(username='meera', password='pass12345')
        self.assertEqual(self.client.get(reverse('bill_detail', args=[bill_id])).status_code, 403)

        self.client.login(username='secretary', password='pass12345')
        response = self.client.get(reverse('bill_list'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['bills'][0]['marketing_task']['id'], self.task.id)

    def test_bill_for_task_without_submission_returns_404(self):
        self.client.login(username='asha', password='pass12345')
        self.assertEqual(self.client.get(reverse('marketing_task_bill', args=[self.task.id])).status_code, 404)

    def test_task_list_filters_by_cycle(self):
        cycle = create_budget_cycle(month=9, year=2026)
        assign_marketing_task(
            date=date(2026, 9, 3),
            student_ids=[self.asha.id, self.meera.id],
            money_given='900.00',
        )
        self.client.login(username='secretary', password='pass12345')

        response = self.client.get(reverse('marketing_task_list'), {'cycle': cycle.id})

        self.assertEqual(response.status_code, 200)
        self.assertEqual([task['date'] for task in response.json()['tasks']], ['2026-09-03'])
        self.assertEqual(self.client.get(reverse('marketing_task_list'), {'cycle': 'x'}).status_code, 404)
