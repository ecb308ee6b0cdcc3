import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Union

from errors import MaterializationFailure
from models import Expense, Income, RecurringTemplate, TransactionType
from schedule import catch_up_window_start, next_occurrence
from seed import DEFAULT_ACCOUNT_ID
from stores import LedgerStore, RecurringTemplateStore

logger = logging.getLogger(__name__)

DEFAULT_CATCH_UP_MONTHS = 3


@dataclass
class TemplateRun:
    template_id: Optional[int]
    occurrences: list[datetime]
    created: list[Union[Expense, Income]] = field(default_factory=list)
    failures: list[MaterializationFailure] = field(default_factory=list)


@dataclass
class ProcessingReport:
    now: datetime
    runs: list[TemplateRun] = field(default_factory=list)

    @property
    def created(self) -> list[Union[Expense, Income]]:
        return [entry for run in self.runs for entry in run.created]

    @property
    def failures(self) -> list[MaterializationFailure]:
        return [failure for run in self.runs for failure in run.failures]

    @property
    def processed_template_ids(self) -> list[Optional[int]]:
        return [run.template_id for run in self.runs]


class RecurrenceEngine:
    def __init__(
        self,
        templates: RecurringTemplateStore,
        ledger: LedgerStore,
        *,
        catch_up_months: int = DEFAULT_CATCH_UP_MONTHS,
        default_account_id: int = DEFAULT_ACCOUNT_ID,
    ) -> None:
        self.templates = templates
        self.ledger = ledger
        self.catch_up_months = catch_up_months
        self.default_account_id = default_account_id

    @staticmethod
    def is_due(template: RecurringTemplate, now: datetime) -> bool:
        return template.next_date <= now

    def missed_occurrences(
        self, template: RecurringTemplate, now: datetime
    ) -> list[datetime]:
        if not self.is_due(template, now):
            return []
        # A template that never ran only posts its first date; its next_date
        # may have been set far in the past when it was created.
        if template.last_processed is None:
            return [template.next_date]

        # The window is half-open, (now - months, now], so a monthly template
        # aligned with now catches up exactly `months` dates.
        window_start = catch_up_window_start(now, self.catch_up_months)
        occurrences: list[datetime] = []
        check = template.next_date
        while check <= now:
            if check > window_start:
                occurrences.append(check)
            check = next_occurrence(check, template.frequency)
        return occurrences

    def process_template(
        self, template: RecurringTemplate, now: datetime
    ) -> TemplateRun:
        run = TemplateRun(
            template_id=template.id,
            occurrences=self.missed_occurrences(template, now),
        )
        for occurrence in run.occurrences:
            try:
                run.created.append(self._materialize(template, occurrence, now))
            except Exception as exc:
                logger.exception(
                    f"recurring_materialize_failed: template={template.id} "
                    f"occurrence={occurrence.isoformat()}"
                )
                run.failures.append(
                    MaterializationFailure(
                        template_id=template.id,
                        occurrence=occurrence,
                        reason=str(exc) or exc.__class__.__name__,
                    )
                )

        template.next_date = next_occurrence(now, template.frequency)
        template.last_processed = now
        template.modified_at = now
        self.templates.save(template)
        self.templates.commit()
        logger.info(
            f"recurring_template_processed: template={template.id} "
            f"created={len(run.created)} failed={len(run.failures)} "
            f"next_date={template.next_date.isoformat()}"
        )
        return run

    def process_all(self, now: datetime) -> ProcessingReport:
        report = ProcessingReport(now=now)
        due = list(self.templates.find_due(now))
        for template in due:
            report.runs.append(self.process_template(template, now))
        return report

    def _materialize(
        self, template: RecurringTemplate, occurrence: datetime, now: datetime
    ) -> Union[Expense, Income]:
        values = dict(
            amount_minor=template.amount_minor,
            category_id=template.category_id,
            account_id=template.account_id or self.default_account_id,
            date=occurrence,
            description=template.description,
            created_at=now,
            modified_at=now,
        )
        if template.transaction_type == TransactionType.expense:
            return self.ledger.insert_expense(Expense(**values))
        if template.transaction_type == TransactionType.income:
            return self.ledger.insert_income(Income(**values))
        raise ValueError(f"Unknown transaction type: {template.transaction_type!r}")
