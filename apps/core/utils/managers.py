from django.db import models


class DatedQuerySet(models.QuerySet):
    date_field = 'date'

    def within(self, start_date, end_date):
        return self.filter(**{
            f'{self.date_field}__gte': start_date,
            f'{self.date_field}__lte': end_date,
        })

    def within_cycle(self, cycle):
        return self.within(cycle.start_date, cycle.end_date)


class DatedManager(models.Manager):
    def get_queryset(self):
        return DatedQuerySet(self.model, using=self._db)

    def within_cycle(self, cycle):
        return self.get_queryset().within_cycle(cycle)
