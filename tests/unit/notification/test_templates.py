#!/usr/bin/env python3
"""
Tests for template resolution and rendering.

Usage:
    python -m pytest tests/unit/notification/test_templates.py -v
"""

import unittest
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from core.config_loader import TemplateConfig
from database.models import NotificationTemplate
from database.uow import notification_uow
from notification.exceptions import TemplateMissing
from notification.templates import (
    GENERIC_MESSAGE,
    GENERIC_TITLE,
    ResolvedTemplate,
    TemplateCatalog,
    render_text,
)
from tests import make_test_session_factory


class TestRenderText(unittest.TestCase):

    def test_both_placeholder_syntaxes(self):
        text = "Hi {{ name }}, booking {booking_id} is ready"
        self.assertEqual(render_text(text, {'name': 'Lea', 'booking_id': 42}), "Hi Lea, booking 42 is ready")

    def test_missing_variable_renders_empty(self):
        self.assertEqual(render_text("Code: {code}.", {}), "Code: .")

    def test_case_variants_are_accepted(self):
        self.assertEqual(render_text("{{CODE}}", {'code': '1234'}), "1234")
        self.assertEqual(render_text("{code}", {'CODE': '1234'}), "1234")

    def test_none_value_renders_empty(self):
        self.assertEqual(render_text("[{note}]", {'note': None}), "[]")

    def test_empty_text(self):
        self.assertEqual(render_text(None, {'a': 1}), "")

    def test_json_braces_are_left_alone(self):
        self.assertEqual(render_text('{"a": 1}', {}), '{"a": 1}')


class TestTemplateResolution(unittest.TestCase):

    def setUp(self):
        self.factory = make_test_session_factory()
        self.catalog = TemplateCatalog()

    def add_template(self, **fields):
        with notification_uow(self.factory) as store:
            store.templates.add(NotificationTemplate(**fields))

    def test_stored_template_in_requested_language(self):
        self.add_template(type='booking_accepted', channel='push', language='de',
                          title='Angenommen', message='Buchung {booking_id} angenommen')
        with notification_uow(self.factory) as store:
            template = self.catalog.resolve(store.templates, 'booking_accepted', 'push', 'de')
        self.assertEqual(template.source, 'database')
        self.assertEqual(template.language, 'de')
        self.assertEqual(template.title, 'Angenommen')

    def test_falls_back_to_default_language_row(self):
        self.add_template(type='booking_accepted', channel='push', language='en',
                          title='Accepted (db)', message='Stored copy')
        with notification_uow(self.factory) as store:
            with self.assertLogs('notification.templates', level='WARNING'):
                template = self.catalog.resolve(store.templates, 'booking_accepted', 'push', 'de')
        self.assertEqual(template.source, 'database')
        self.assertEqual(template.language, 'en')
        self.assertEqual(template.title, 'Accepted (db)')

    def test_inactive_rows_are_ignored(self):
        self.add_template(type='booking_accepted', channel='push', language='fr',
                          title='Ancien', message='Ancien texte', is_active=False)
        with notification_uow(self.factory) as store:
            template = self.catalog.resolve(store.templates, 'booking_accepted', 'push', 'fr')
        self.assertEqual(template.source, 'builtin')
        self.assertEqual(template.title, 'Demande acceptée')

    def test_builtin_copy_when_nothing_stored(self):
        with notification_uow(self.factory) as store:
            template = self.catalog.resolve(store.templates, 'payment_received', 'push', 'fr')
        self.assertEqual(template.source, 'builtin')
        self.assertEqual(template.message, 'Paiement reçu avec succès')

    def test_builtin_falls_back_to_default_language(self):
        with notification_uow(self.factory) as store:
            template = self.catalog.resolve(store.templates, 'verification_code', 'sms', 'fr')
        self.assertEqual(template.source, 'builtin')
        self.assertEqual(template.language, 'en')

    def test_generic_fallback(self):
        with notification_uow(self.factory) as store:
            template = self.catalog.resolve(store.templates, 'trip_reminder', 'push', 'en')
        self.assertEqual(template.source, 'generic')
        self.assertEqual(template.title, GENERIC_TITLE)
        self.assertEqual(template.message, GENERIC_MESSAGE)

    def test_missing_template_raises_when_generic_disabled(self):
        catalog = TemplateCatalog(TemplateConfig(use_generic_fallback=False))
        with notification_uow(self.factory) as store:
            with self.assertRaises(TemplateMissing):
                catalog.resolve(store.templates, 'trip_reminder', 'push', 'en')

    def test_store_error_becomes_template_missing(self):
        repo = MagicMock()
        repo.find.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        with self.assertRaises(TemplateMissing):
            self.catalog.resolve(repo, 'booking_accepted', 'push', 'en')

    def test_unknown_channel_raises_value_error(self):
        with self.assertRaises(ValueError):
            self.catalog.resolve(MagicMock(), 'booking_accepted', 'fax', 'en')


class TestTemplateRendering(unittest.TestCase):

    def setUp(self):
        self.catalog = TemplateCatalog()

    def template(self, channel, **fields):
        values = dict(type='booking_accepted', channel=channel, language='en',
                      title='Booking {booking_id}', message='Booking {booking_id} accepted')
        values.update(fields)
        return ResolvedTemplate(**values)

    def test_push_fields(self):
        rendered = self.catalog.render(self.template('push'), {'booking_id': 42})
        self.assertEqual(rendered, {
            'title': 'Booking 42',
            'body': 'Booking 42 accepted',
            'content': 'Booking 42 accepted',
        })

    def test_email_fields_prefer_html_and_subject(self):
        rendered = self.catalog.render(
            self.template('email', subject='Re: {booking_id}', html_content='<p>{booking_id}</p>'),
            {'booking_id': 42},
        )
        self.assertEqual(rendered['subject'], 'Re: 42')
        self.assertEqual(rendered['content'], '<p>42</p>')
        self.assertEqual(rendered['plain_content'], 'Booking 42 accepted')

    def test_email_subject_defaults_to_title(self):
        rendered = self.catalog.render(self.template('email'), {'booking_id': 7})
        self.assertEqual(rendered['subject'], 'Booking 7')
        self.assertEqual(rendered['content'], 'Booking 7 accepted')

    def test_sms_and_in_app_fields(self):
        sms = self.catalog.render(self.template('sms'), {'booking_id': 1})
        self.assertEqual(set(sms), {'title', 'content'})

        in_app = self.catalog.render(self.template('in_app'), {'booking_id': 1})
        self.assertEqual(in_app['message'], 'Booking 1 accepted')
        self.assertIsNone(in_app['html_content'])

    def test_missing_required_variables_are_logged_not_raised(self):
        template = self.template('push', required_variables=['booking_id', 'pickup_city'])
        with self.assertLogs('notification.templates', level='WARNING') as logs:
            rendered = self.catalog.render(template, {'booking_id': 3})
        self.assertIn('pickup_city', logs.output[0])
        self.assertEqual(rendered['title'], 'Booking 3')


if __name__ == '__main__':
    unittest.main()
