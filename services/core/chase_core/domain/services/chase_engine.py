"""Chase tick orchestrator.

Invoked on a fixed cadence. Each tick finds every active enrollment whose
next chase is due and, per enrollment, in its own transaction:

1. Decides the escalation level (never below the enrollment's current
   level) and the channel
2. Reuses or mints the client's upload deep link
3. Renders the content
4. Claims the enrollment with a compare-and-set update that advances
   chases_delivered and next_chase_at (null once max_chases is reached)
5. Inserts the queued ChaseMessage and commits

The claim makes ticks idempotent: a second tick at the same instant, or a
concurrent one, finds the enrollment no longer due (or loses the claim)
and creates nothing.

Usage:
    engine = ChaseEngine.from_settings(db, get_settings())
    summary = engine.tick()
"""

import random
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional, Union

from sqlalchemy.orm import Session

from chase_core.config import Settings
from chase_core.domain.errors import ConfigError
from chase_core.domain.models import (
    Campaign,
    ChaseMessage,
    Client,
    Enrollment,
    EnrollmentStatus,
    MessageStatus,
    Practice,
    as_naive_utc,
    utcnow,
)
from chase_core.domain.services.chase_config import ChaseConfig
from chase_core.domain.services.chat_templates import TemplateVariables, get_template_for_level
from chase_core.domain.services.escalation import (
    Channel,
    EscalationLevel,
    MessageContext,
    escalation_level,
    format_deadline,
    generate_message,
    max_level,
    select_channel,
)
from chase_core.domain.services.magic_links import MagicLinkService, portal_url
from chase_core.domain.services.scheduling import next_chase_at
from chase_core.infrastructure.signing import UnsubscribeTokenSigner, unsubscribe_url
from chase_core.observability.logging import LogContext, get_logger

logger = get_logger(__name__)

DEFAULT_TAX_YEAR_LABEL = "this tax year"


@dataclass
class TickSummary:
    """Counts from one tick."""

    processed: int = 0
    errors: int = 0
    skipped: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class ChaseEngine:
    """Creates due chase messages and advances enrollments."""

    def __init__(
        self,
        db: Session,
        base_url: str,
        magic_links: Optional[MagicLinkService] = None,
        unsubscribe_signer: Optional[UnsubscribeTokenSigner] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the engine.

        Args:
            db: SQLAlchemy database session. The engine commits per enrollment.
            base_url: Public base URL for portal and unsubscribe links.
            magic_links: Deep-link issuer (defaults to one on the same session).
            unsubscribe_signer: Signs email unsubscribe links; omitted links
                are left out of the footer.
            rng: Randomness for send-time jitter.
        """
        self.db = db
        self.base_url = base_url
        self.magic_links = magic_links or MagicLinkService(db)
        self.unsubscribe_signer = unsubscribe_signer
        self.rng = rng or random.Random()

    @classmethod
    def from_settings(
        cls, db: Session, settings: Settings, rng: Optional[random.Random] = None
    ) -> "ChaseEngine":
        return cls(
            db=db,
            base_url=settings.base_url,
            magic_links=MagicLinkService(
                db,
                ttl_days=settings.magic_link_ttl_days,
                max_usages=settings.magic_link_max_usages,
            ),
            unsubscribe_signer=UnsubscribeTokenSigner(settings.unsubscribe_secret),
            rng=rng,
        )

    # =========================================================================
    # TICK
    # =========================================================================

    def find_due(self, now: datetime) -> list[tuple[int, int]]:
        """(enrollment id, campaign id) pairs due at ``now``, oldest first."""
        rows = (
            self.db.query(Enrollment.id, Enrollment.campaign_id)
            .filter(
                Enrollment.status == EnrollmentStatus.ACTIVE,
                Enrollment.next_chase_at.is_not(None),
                Enrollment.next_chase_at <= now,
            )
            .order_by(Enrollment.next_chase_at, Enrollment.id)
            .all()
        )
        return [(row[0], row[1]) for row in rows]

    def load_config(self, campaign_id: int) -> ChaseConfig:
        """Build the validated configuration for a campaign.

        Raises:
            ConfigError: If the campaign or its practice is missing or invalid.
        """
        campaign = self.db.get(Campaign, campaign_id)
        if campaign is None:
            raise ConfigError(f"Campaign {campaign_id} not found")
        practice = self.db.get(Practice, campaign.practice_id)
        if practice is None:
            raise ConfigError(f"Practice {campaign.practice_id} not found")
        return ChaseConfig.from_rows(campaign, practice)

    def tick(self, now: Optional[datetime] = None) -> TickSummary:
        """Run one chase tick.

        Per-enrollment failures are rolled back, logged and counted; they
        never abort the tick. Errors reading the due list propagate.
        """
        now = as_naive_utc(now) if now is not None else utcnow()
        summary = TickSummary()

        due = self.find_due(now)

        configs: dict[int, Union[ChaseConfig, ConfigError]] = {}

        for enrollment_id, campaign_id in due:
            ctx = LogContext(enrollment_id=enrollment_id, extra={"campaign_id": campaign_id})

            if campaign_id not in configs:
                try:
                    configs[campaign_id] = self.load_config(campaign_id)
                except ConfigError as e:
                    configs[campaign_id] = e
                    logger.error(
                        "Invalid campaign configuration, skipping its enrollments",
                        context=ctx,
                        error=str(e),
                    )

            config = configs[campaign_id]
            if isinstance(config, ConfigError):
                summary.errors += 1
                continue

            try:
                message = self.process_enrollment(enrollment_id, config, now)
                if message is None:
                    self.db.rollback()
                    summary.skipped += 1
                    continue
                self.db.commit()
                summary.processed += 1
            except Exception as e:
                self.db.rollback()
                summary.errors += 1
                logger.error(
                    "Chase failed for enrollment",
                    context=ctx,
                    exc_info=True,
                    error=str(e),
                )

        logger.info("Chase tick complete", **summary.to_dict())
        return summary

    # =========================================================================
    # PER ENROLLMENT
    # =========================================================================

    def process_enrollment(
        self, enrollment_id: int, config: ChaseConfig, now: datetime
    ) -> Optional[ChaseMessage]:
        """Create the next chase for one enrollment.

        Does not commit. Returns None when the enrollment is no longer due
        or another worker claimed it first.
        """
        enrollment = self.db.get(Enrollment, enrollment_id)
        if (
            enrollment is None
            or enrollment.status != EnrollmentStatus.ACTIVE
            or enrollment.next_chase_at is None
            or enrollment.next_chase_at > now
        ):
            return None

        client = self.db.get(Client, enrollment.client_id)
        if client is None:
            raise ConfigError(f"Client {enrollment.client_id} not found")
        practice = self.db.get(Practice, config.practice_id)

        observed_delivered = enrollment.chases_delivered
        observed_next = enrollment.next_chase_at
        ctx = LogContext(
            practice_id=config.practice_id,
            client_id=client.id,
            enrollment_id=enrollment.id,
        )

        level = max_level(
            escalation_level(observed_delivered, config.escalate_after),
            enrollment.current_escalation_level or EscalationLevel.GENTLE,
        )
        channel = select_channel(
            observed_delivered, client.preferred_channel, config.default_channel.value
        )

        link = self.magic_links.get_or_create_link(
            practice_id=config.practice_id,
            client_id=client.id,
            enrollment_id=enrollment.id,
            now=now,
        )
        upload_url = portal_url(self.base_url, link.token)
        remaining = len(enrollment.outstanding_documents)

        subject, body_text, body_html, template_variables = self._render(
            level, channel, config, practice, client, upload_url, remaining, now
        )

        delivered_after = observed_delivered + 1
        if delivered_after >= config.max_chases:
            next_at = None
        else:
            next_at = next_chase_at(
                now,
                config.cadence_days,
                config.skip_weekends,
                config.business_hours_start,
                config.business_hours_end,
                self.rng,
                tz=config.timezone,
            )

        claimed = (
            self.db.query(Enrollment)
            .filter(
                Enrollment.id == enrollment.id,
                Enrollment.status == EnrollmentStatus.ACTIVE,
                Enrollment.next_chase_at == observed_next,
                Enrollment.chases_delivered == observed_delivered,
            )
            .update(
                {
                    Enrollment.chases_delivered: delivered_after,
                    Enrollment.current_escalation_level: level.value,
                    Enrollment.last_chased_at: now,
                    Enrollment.next_chase_at: next_at,
                    Enrollment.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        if claimed == 0:
            logger.info("Enrollment already claimed by another tick", context=ctx)
            return None

        message = ChaseMessage(
            practice_id=config.practice_id,
            enrollment_id=enrollment.id,
            client_id=client.id,
            campaign_id=config.campaign_id,
            magic_link_id=link.id,
            channel=channel.value,
            escalation_level=level.value,
            chase_number=delivered_after,
            subject=subject,
            body_text=body_text,
            body_html=body_html,
            template_variables=template_variables,
            status=MessageStatus.QUEUED,
            created_at=now,
        )
        self.db.add(message)
        self.db.flush()

        logger.info(
            "Queued chase message",
            context=LogContext(
                practice_id=config.practice_id,
                client_id=client.id,
                enrollment_id=enrollment.id,
                message_id=message.id,
            ),
            channel=channel.value,
            level=level.value,
            chase_number=delivered_after,
            next_chase_at=next_at.isoformat() if next_at else None,
        )

        return message

    def _render(
        self,
        level: EscalationLevel,
        channel: Channel,
        config: ChaseConfig,
        practice: Optional[Practice],
        client: Client,
        upload_url: str,
        remaining: int,
        now: datetime,
    ) -> tuple[Optional[str], str, Optional[str], Optional[dict]]:
        """Content for the message row: subject, text, html, chat variables."""
        if channel == Channel.CHAT:
            variables = TemplateVariables(
                client_first_name=client.first_name,
                practice_name=config.practice_name,
                tax_year=config.tax_year or DEFAULT_TAX_YEAR_LABEL,
                portal_url=upload_url,
                deadline_date=format_deadline(config.deadline_date),
                remaining_docs=remaining,
                partner_name=practice.partner_name if practice else None,
            )
            body = get_template_for_level(level).render(variables)
            return None, body, None, variables.to_dict()

        footer_url = None
        if channel == Channel.EMAIL and self.unsubscribe_signer is not None:
            token = self.unsubscribe_signer.generate(client.id, Channel.EMAIL.value, now=now)
            footer_url = unsubscribe_url(self.base_url, token)

        rendered = generate_message(
            level,
            MessageContext(
                client_first_name=client.first_name,
                practice_name=config.practice_name,
                remaining_documents=remaining,
                portal_url=upload_url,
                deadline_date=config.deadline_date,
                unsubscribe_url=footer_url,
            ),
        )

        if channel == Channel.SMS:
            return None, rendered.body_text, None, None
        return rendered.subject, rendered.body_text, rendered.body_html, None


__all__ = [
    "ChaseEngine",
    "TickSummary",
]
