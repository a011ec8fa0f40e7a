"""
Template Catalog

Resolves (type, channel, language) to a template and renders it into the
fields each channel expects. Lookup order:

1. stored template in the requested language
2. stored template in the default language
3. built-in copy for the type (requested, then default language)
4. generic "Notification" / "You have a new notification"

Rendering only substitutes variables; a missing variable becomes "".
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.config_loader import TemplateConfig
from database.repositories import TemplateRepository
from notification.catalog import Channel
from notification.exceptions import TemplateMissing

logger = logging.getLogger(__name__)

GENERIC_TITLE = "Notification"
GENERIC_MESSAGE = "You have a new notification"

# Matches {{ name }} and {name}
_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z0-9_.]+)\s*\}\}|\{([A-Za-z0-9_.]+)\}")

BUILTIN_TEMPLATES: Dict[str, Dict[str, Dict[str, Dict[str, str]]]] = {
    'en': {
        'new_booking_request': {
            'push': {'title': 'New request', 'message': 'You received a new booking request'},
        },
        'booking_request': {
            'push': {'title': 'New request', 'message': 'You received a new booking request'},
        },
        'booking_accepted': {
            'push': {'title': 'Request accepted', 'message': 'Your request has been accepted'},
            'email': {'title': 'Request accepted', 'subject': 'Your booking request was accepted',
                      'message': 'Good news: your booking {booking_reference} has been accepted.'},
        },
        'booking_rejected': {
            'push': {'title': 'Request declined', 'message': 'Your request has been declined'},
        },
        'booking_cancelled': {
            'push': {'title': 'Booking cancelled', 'message': 'A booking has been cancelled'},
        },
        'payment_received': {
            'push': {'title': 'Payment received', 'message': 'Payment received successfully'},
        },
        'payment_confirmed': {
            'push': {'title': 'Payment confirmed', 'message': 'Your payment has been confirmed'},
        },
        'trip_cancelled': {
            'push': {'title': 'Trip cancelled', 'message': 'A trip has been cancelled'},
        },
        'journey_started': {
            'push': {'title': 'Journey started', 'message': 'Your carrier has started the journey'},
            'email': {'title': 'Journey started', 'subject': 'Your journey has started',
                      'message': 'Your carrier has started the journey. You will be notified on delivery.'},
        },
        'delivery_code_generated': {
            'push': {'title': 'Delivery code', 'message': 'Your delivery code has been generated'},
            'email': {'title': 'Delivery code', 'subject': 'Delivery code for your parcel',
                      'message': 'Your delivery code is {delivery_code}. Keep it safe.'},
        },
        'delivery_confirmed': {
            'push': {'title': 'Delivery confirmed', 'message': 'The delivery has been confirmed'},
        },
        'verification_code': {
            'sms': {'title': 'Verification code', 'message': 'Your verification code is {code}'},
        },
    },
    'fr': {
        'new_booking_request': {
            'push': {'title': 'Nouvelle demande', 'message': 'Vous avez reçu une nouvelle demande de réservation'},
        },
        'booking_request': {
            'push': {'title': 'Nouvelle demande', 'message': 'Vous avez reçu une nouvelle demande de réservation'},
        },
        'booking_accepted': {
            'push': {'title': 'Demande acceptée', 'message': 'Votre demande a été acceptée'},
            'email': {'title': 'Demande acceptée', 'subject': 'Votre demande de réservation a été acceptée',
                      'message': 'Bonne nouvelle : votre réservation {booking_reference} a été acceptée.'},
        },
        'booking_rejected': {
            'push': {'title': 'Demande refusée', 'message': 'Votre demande a été refusée'},
        },
        'booking_cancelled': {
            'push': {'title': 'Réservation annulée', 'message': 'Une réservation a été annulée'},
        },
        'payment_received': {
            'push': {'title': 'Paiement reçu', 'message': 'Paiement reçu avec succès'},
        },
        'payment_confirmed': {
            'push': {'title': 'Paiement confirmé', 'message': 'Votre paiement a été confirmé'},
        },
        'journey_started': {
            'push': {'title': 'Voyage commencé', 'message': 'Votre transporteur a commencé le voyage'},
            'email': {'title': 'Voyage commencé', 'subject': 'Votre voyage a commencé',
                      'message': 'Votre transporteur a commencé le voyage. Vous serez notifié de la livraison.'},
        },
        'delivery_code_generated': {
            'push': {'title': 'Code de livraison', 'message': 'Votre code de livraison a été généré'},
            'email': {'title': 'Code de livraison', 'subject': 'Code de livraison pour votre colis',
                      'message': 'Votre code de livraison est {delivery_code}. Gardez-le précieusement !'},
        },
        'delivery_code_regenerated': {
            'push': {'title': 'Nouveau code', 'message': 'Un nouveau code de livraison a été généré'},
        },
        'delivery_confirmed': {
            'push': {'title': 'Livraison confirmée', 'message': 'La livraison a été confirmée avec succès'},
        },
    },
}


@dataclass
class ResolvedTemplate:
    type: str
    channel: str
    language: str
    title: str
    message: str
    subject: Optional[str] = None
    html_content: Optional[str] = None
    required_variables: List[str] = field(default_factory=list)
    source: str = 'database'  # database | builtin | generic


def render_text(text: Optional[str], variables: Dict[str, Any]) -> str:
    """Substitute {{ name }} / {name} placeholders; unknown names become ""."""
    if not text:
        return ""

    def _replace(match) -> str:
        name = match.group(1) or match.group(2)
        for key in (name, name.lower(), name.upper()):
            if key in variables:
                value = variables[key]
                return "" if value is None else str(value)
        logger.debug(f"Template variable '{name}' not provided")
        return ""

    return _PLACEHOLDER.sub(_replace, text)


class TemplateCatalog:
    def __init__(self, config: Optional[TemplateConfig] = None):
        self.config = config or TemplateConfig()

    @property
    def default_language(self) -> str:
        return self.config.default_language

    def resolve(self, repo: TemplateRepository, type: str, channel, language: Optional[str] = None) -> ResolvedTemplate:
        """
        Raises:
            TemplateMissing: nothing matched and the generic fallback is disabled,
                or the template store could not be queried
        """
        channel = Channel.parse(channel).value
        language = language or self.default_language
        languages = [language] if language == self.default_language else [language, self.default_language]

        for lang in languages:
            try:
                stored = repo.find(type, channel, lang)
            except SQLAlchemyError as e:
                logger.error(f"Template lookup failed for {type}/{channel}/{lang}: {e}")
                raise TemplateMissing(type, channel, lang) from e
            if stored is not None:
                if lang != language:
                    logger.warning(f"No '{language}' template for {type}/{channel}, using '{lang}'")
                return ResolvedTemplate(
                    type=type,
                    channel=channel,
                    language=lang,
                    title=stored.title or "",
                    message=stored.message or "",
                    subject=stored.subject,
                    html_content=stored.html_content,
                    required_variables=list(stored.variables or []),
                    source='database',
                )

        for lang in languages:
            builtin = BUILTIN_TEMPLATES.get(lang, {}).get(type, {}).get(channel)
            if builtin:
                logger.warning(f"Using built-in {lang} copy for {type}/{channel}")
                return ResolvedTemplate(
                    type=type,
                    channel=channel,
                    language=lang,
                    title=builtin.get('title', ''),
                    message=builtin.get('message', ''),
                    subject=builtin.get('subject'),
                    source='builtin',
                )

        if not self.config.use_generic_fallback:
            raise TemplateMissing(type, channel, language)

        logger.warning(f"No template for {type}/{channel}/{language}, using generic fallback")
        return ResolvedTemplate(
            type=type,
            channel=channel,
            language=language,
            title=GENERIC_TITLE,
            message=GENERIC_MESSAGE,
            source='generic',
        )

    def missing_variables(self, template: ResolvedTemplate, variables: Dict[str, Any]) -> List[str]:
        return [name for name in template.required_variables if variables.get(name) in (None, "")]

    def render(self, template: ResolvedTemplate, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Render `template` into the field map its channel expects. Never raises on missing variables."""
        variables = variables or {}
        missing = self.missing_variables(template, variables)
        if missing:
            logger.warning(
                f"Template {template.type}/{template.channel} missing variables: {', '.join(missing)}"
            )

        title = render_text(template.title, variables)
        message = render_text(template.message, variables)
        subject = render_text(template.subject, variables) if template.subject else None
        html = render_text(template.html_content, variables) if template.html_content else None

        if template.channel == Channel.PUSH.value:
            return {'title': title, 'body': message, 'content': message}
        if template.channel == Channel.EMAIL.value:
            return {
                'title': title,
                'subject': subject or title,
                'content': html or message,
                'plain_content': message,
            }
        if template.channel == Channel.SMS.value:
            return {'title': title, 'content': message}
        return {'title': title, 'content': message, 'message': message, 'html_content': html}
