import random
from decimal import Decimal

from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone
from faker import Faker

from apps.core.users.models import User
from apps.mess.budget.models import BudgetCycle, Payment
from apps.mess.budget.services import create_budget_cycle, record_payment
from apps.mess.marketing.models import MarketingTask
from apps.mess.marketing.services import assign_marketing_task


class Command(BaseCommand):
    help = 'Seeds the database with test data.'

    def add_arguments(self, parser):
        parser.add_argument('--boarders', type=int, default=20)

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write('Seeding database...')

        fake = Faker()

        # Create users
        if not User.objects.filter(username='secretary@example.com').exists():
            User.objects.create_superuser('secretary@example.com', 'secretary@example.com', 'password')
            self.stdout.write(self.style.SUCCESS('Successfully created general secretary user.'))

        manager, created = User.objects.get_or_create(
            username='manager@example.com',
            defaults={
                'email': 'manager@example.com',
                'first_name': 'Mess',
                'last_name': 'Manager',
                'role': User.ROLE_MESS_MANAGER,
            }
        )
        if created:
            manager.set_password('password')
            manager.save()
            self.stdout.write(self.style.SUCCESS('Successfully created mess manager user.'))

        for _ in range(options['boarders']):
            email = fake.unique.email()
            boarder, created = User.objects.get_or_create(
                username=email,
                defaults={
                    'email': email,
                    'first_name': fake.first_name(),
                    'last_name': fake.last_name(),
                    'room_number': str(fake.random_int(min=100, max=450)),
                    'role': User.ROLE_BOARDER,
                }
            )
            if created:
                boarder.set_password('password')
                boarder.save()
                self.stdout.write(self.style.SUCCESS(f'Successfully created boarder: {boarder.display_name}'))

        # Open the current budget cycle
        today = timezone.localdate()
        cycle = BudgetCycle.objects.for_month(today.month, today.year).first()
        if cycle is None:
            cycle = create_budget_cycle(month=today.month, year=today.year, created_by=manager)
            self.stdout.write(self.style.SUCCESS(f'Successfully created budget cycle: {cycle.label}'))

        boarders = list(User.objects.boarders())
        if not cycle.is_finalized:
            paid_ids = set(Payment.objects.filter(budget_cycle=cycle).values_list('user_id', flat=True))
            for boarder in boarders:
                if boarder.pk in paid_ids or random.random() < 0.2:
                    continue
                record_payment(
                    user=boarder,
                    cycle=cycle,
                    amount_paid=Decimal(settings.MESS_CYCLE_FEE),
                    reference=f'SEED-{fake.unique.bothify("????-####").upper()}',
                    recorded_by=manager,
                )
            self.stdout.write(self.style.SUCCESS(f'Recorded payments for {cycle.label}'))

        # Assign today's marketing duty
        if (
            not cycle.is_finalized
            and len(boarders) >= MarketingTask.STUDENTS_PER_TASK
            and not MarketingTask.objects.filter(date=today).exists()
        ):
            pair = random.sample(boarders, MarketingTask.STUDENTS_PER_TASK)
            task = assign_marketing_task(
                date=today,
                student_ids=[student.pk for student in pair],
                money_given=Decimal(random.choice([1500, 2000, 2500])),
                created_by=manager,
            )
            self.stdout.write(self.style.SUCCESS(f'Successfully assigned marketing task for {task.date}'))

        self.stdout.write(self.style.SUCCESS('Database seeding complete!'))
