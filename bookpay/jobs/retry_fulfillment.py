"""Retry every open fulfillment issue.

Run with ``python -m bookpay.jobs.retry_fulfillment`` (cron or a one-off).
"""
import logging

from sqlmodel import Session

from bookpay.config import configure_logging, get_settings
from bookpay.database import get_engine
from bookpay.errors import FulfillmentError
from bookpay.notifications import Notifier
from bookpay.services.fulfillment import FulfillmentDispatcher

logger = logging.getLogger(__name__)


def retry_open_issues(session: Session, settings) -> dict:
    dispatcher = FulfillmentDispatcher(session, Notifier(session, settings))
    resolved, failed = [], []

    for issue_id in [issue.id for issue in dispatcher.list_issues("open")]:
        try:
            dispatcher.retry_issue(issue_id)
            resolved.append(issue_id)
        except FulfillmentError as e:
            logger.error(f"Issue {issue_id} still failing: books {e.failed_book_ids}")
            failed.append(issue_id)

    logger.info(f"Fulfillment retry finished: {len(resolved)} resolved, {len(failed)} still open")
    return {"resolved": resolved, "failed": failed}


def main():
    settings = get_settings()
    configure_logging(settings.log_level)
    with Session(get_engine()) as session:
        retry_open_issues(session, settings)


if __name__ == "__main__":
    main()
