"""
Category membership change job.

Adds "categorize" recent-change entries for the category membership
changes of a page's recent revisions, so readers can scan categories for
recent membership changes.

Parameters:
  - pageId: page ID
  - revTimestamp: timestamp of the triggering revision

Category changes are recorded for revisions at or after the timestamp,
minus a fudge window, for this page. Only one job per page needs to run:
the queue keeps the first and drops later duplicates, and the window
resolver picks up the revisions those duplicates were queued for.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .cluster import DatabaseCluster
from .config import JobConfig
from .differ import RevisionCategoryDiffer
from .emitter import NotificationEmitter
from .jobqueue import Job, JobOutcome, JobSpecification
from .logger import StructuredLogger, get_logger
from .recentchanges import RecentChangesSink
from .render import ParserCache, RevisionRenderer
from .revisions import PageRecord, TemplateLookup, load_page
from .timestamps import parse_timestamp, to_wiki_timestamp
from .window import resolve_window


@dataclass
class JobServices:
    """Collaborators handed to each job instead of global lookups."""

    cluster: DatabaseCluster
    renderer: RevisionRenderer
    sink: RecentChangesSink
    config: JobConfig
    parser_cache: Optional[ParserCache] = None
    logger: Optional[StructuredLogger] = None

    @classmethod
    def from_config(cls, config: JobConfig, logger: Optional[StructuredLogger] = None, feeds=()):
        logger = logger or get_logger()
        return cls(
            cluster=DatabaseCluster.from_config(config, logger=logger),
            renderer=RevisionRenderer(logger=logger),
            sink=RecentChangesSink(feeds=feeds, logger=logger),
            config=config,
            parser_cache=ParserCache(),
            logger=logger,
        )


class CategoryMembershipChangeJob(Job):
    job_type = "categoryMembershipChange"

    LOCK_NAME = "CategoryMembershipChange"
    QUERY_GROUPS = ("recentchanges",)

    @classmethod
    def new_spec(cls, page: PageRecord, revision_timestamp) -> JobSpecification:
        """
        Specification for enqueueing; the revision timestamp does not take
        part in de-duplication, so the first queued job wins.
        """
        return JobSpecification(
            cls.job_type,
            {"pageId": page.page_id, "revTimestamp": to_wiki_timestamp(parse_timestamp(revision_timestamp))},
            remove_duplicates=True,
            remove_duplicates_ignore_params=("revTimestamp",),
            page=(page.namespace, page.title),
        )

    def __init__(self, params: Dict[str, Any], services: JobServices):
        super().__init__(params)
        self.services = services
        self.config = services.config
        self.logger = services.logger or get_logger()
        self.remove_duplicates = True
        self.page_id = int(params["pageId"])
        self.trigger_timestamp = parse_timestamp(params["revTimestamp"])

    def get_deduplication_info(self) -> Dict[str, Any]:
        info = super().get_deduplication_info()
        info["params"].pop("revTimestamp", None)
        return info

    def run(self) -> JobOutcome:
        owner = f"{type(self).__name__}.run"
        self.logger.record_run_attempt()
        cluster = self.services.cluster

        rnd = cluster.begin_round(owner)
        # Feeds hear about committed rows only once the page lock is released
        with self.services.sink.deferred_delivery(rnd.primary), rnd:
            ticket = rnd.empty_transaction_ticket(owner)

            page = load_page(rnd.primary, self.page_id)
            if page is None:
                return self._soft_skip(f"Could not find page #{self.page_id}")

            # Pre-wait outside the critical section to keep lock hold times short
            dbr = rnd.replica(self.QUERY_GROUPS)
            if not rnd.wait_for_primary_pos(dbr, self.config.replica_wait_timeout):
                return self._fail("Timed out while pre-waiting for replica DB to catch up", "ReplicaLagTimeout")

            lock_key = f"{cluster.domain_id}:{self.LOCK_NAME}:{page.page_id}"
            lock = rnd.get_scoped_lock_and_flush(lock_key, owner, self.config.lock_timeout)
            if lock is None:
                return self._fail(f"Could not acquire lock '{lock_key}'", "LockTimeout")

            with lock:
                # Jobs for this page must see each others' changes
                if not rnd.wait_for_primary_pos(dbr, self.config.replica_wait_timeout):
                    return self._fail("Timed out while waiting for replica DB to catch up", "ReplicaLagTimeout")
                rnd.flush_snapshot(dbr)

                window = resolve_window(
                    dbr, self.services.sink, page.page_id, self.trigger_timestamp, self.config.fudge_seconds
                )
                self.logger.debug(
                    "Resolved convergence window",
                    page_id=page.page_id,
                    cutoff=window.cutoff.isoformat(),
                    tiebreak=window.tiebreak_rev_id,
                    revisions=len(window.revisions),
                )

                differ = RevisionCategoryDiffer(
                    self.services.renderer,
                    self.services.parser_cache,
                    primary=rnd.primary,
                    snapshot=dbr,
                    templates=TemplateLookup(dbr),
                    logger=self.logger,
                )
                emitter = NotificationEmitter(
                    rnd,
                    ticket,
                    self.services.sink,
                    self.config.batch_size,
                    owner,
                    replica_wait_timeout=self.config.replica_wait_timeout,
                    logger=self.logger,
                )

                # Apply category updates in revision timestamp order
                for revision in window.revisions:
                    emitter.emit(page, revision, differ.delta_for_revision(page, revision))
                    if emitter.replication_lagged:
                        # Committed batches stay; the next run resumes from their checkpoint
                        return self._fail(
                            "Timed out waiting for replication after batch commit", "ReplicaLagTimeout"
                        )

            outcome = JobOutcome.success(len(window.revisions), emitter.emitted, rnd.batch_commits)

        self.logger.record_run_success(
            outcome.revisions_processed, outcome.notifications_emitted, outcome.batch_commits
        )
        self.logger.info(
            "Category membership convergence complete",
            page_id=self.page_id,
            revisions=outcome.revisions_processed,
            notifications=outcome.notifications_emitted,
            batch_commits=outcome.batch_commits,
        )
        return outcome

    def _soft_skip(self, reason: str) -> JobOutcome:
        self.set_last_error(reason)
        self.logger.warning(reason, page_id=self.page_id)
        self.logger.record_soft_skip()
        return JobOutcome.soft_skip(reason)

    def _fail(self, reason: str, error_type: str) -> JobOutcome:
        self.set_last_error(reason)
        self.logger.warning(reason, page_id=self.page_id)
        self.logger.record_recoverable_failure(error_type)
        return JobOutcome.recoverable_failure(reason)


def run_category_membership_change(
    page_id: int, revision_timestamp, services: JobServices
) -> JobOutcome:
    """Run convergence for one page given its trigger timestamp."""
    job = CategoryMembershipChangeJob({"pageId": page_id, "revTimestamp": revision_timestamp}, services)
    return job.run()
