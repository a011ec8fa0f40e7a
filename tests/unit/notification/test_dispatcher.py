#!/usr/bin/env python3
"""
Tests for single-channel dispatch: logging, quiet-hours cancellation and
failure isolation.

Usage:
    python -m pytest tests/unit/notification/test_dispatcher.py -v
"""

import unittest
from datetime import datetime, time, timezone

from core.config_loader import DispatchConfig
from database.uow import notification_uow
from notification.catalog import Channel
from notification.dispatcher import Dispatcher
from notification.preferences import PreferenceResolver
from notification.selector import ChannelSelector
from notification.templates import TemplateCatalog
from tests import NOW, add_preferences, add_user, make_test_session_factory
from tests.mocks.notification_mocks import RecordingAdapter, SlowAdapter, recording_registry

LATE = datetime(2024, 6, 1, 23, 30, tzinfo=timezone.utc)


class TestDispatcher(unittest.TestCase):

    def setUp(self):
        self.factory = make_test_session_factory()
        self.user_id = add_user(self.factory, language='fr')
        add_preferences(
            self.factory, self.user_id,
            quiet_hours_enabled=True,
            quiet_hours_start=time(22, 0),
            quiet_hours_end=time(7, 0),
        )
        with notification_uow(self.factory) as store:
            self.notification_id = store.notifications.create(
                user_id=self.user_id, type='booking_accepted', title='t', message='m',
                data={'booking_id': 42}, created_at=NOW,
            ).id
        self.make_dispatcher()

    def make_dispatcher(self, config=None, **overrides):
        self.registry, self.adapters = recording_registry(**overrides)
        resolver = PreferenceResolver()
        self.dispatcher = Dispatcher(self.registry, TemplateCatalog(), ChannelSelector(resolver), config)

    def dispatch(self, channel, now=NOW, variables=None, priority=None):
        with notification_uow(self.factory) as store:
            notification = store.notifications.get_by_id(self.notification_id)
            if priority:
                notification.priority = priority
            user = store.users.get_by_id(self.user_id)
            prefs = store.preferences.get_by_user_id(self.user_id)
            result = self.dispatcher.dispatch_channel(
                store, notification, user, prefs, channel,
                variables if variables is not None else {'booking_id': 42}, 'fr', now,
            )
        return result

    def stored_log(self, log_id):
        with notification_uow(self.factory) as store:
            return store.logs.get_by_id(log_id)

    def test_successful_send(self):
        result = self.dispatch('push')

        self.assertTrue(result.success)
        self.assertEqual(result.provider_message_id, 'push-1')
        log = self.stored_log(result.log_id)
        self.assertEqual(log.status, 'sent')
        self.assertEqual(log.attempts, 1)
        self.assertEqual(log.recipient, 'fcm-token-abc123')
        self.assertEqual(log.title, 'Demande acceptée')

        sent = self.adapters['push'].sent[0]
        self.assertEqual(sent['message']['body'], 'Votre demande a été acceptée')
        self.assertEqual(sent['data'], {'booking_id': 42, 'notification_id': self.notification_id})

    def test_email_uses_subject_as_log_title(self):
        result = self.dispatch('email')
        log = self.stored_log(result.log_id)
        self.assertEqual(log.title, 'Votre demande de réservation a été acceptée')

    def test_quiet_hours_cancel_push(self):
        result = self.dispatch(Channel.PUSH, now=LATE)

        self.assertEqual(result.status, 'cancelled')
        self.assertEqual(result.error, 'quiet hours')
        self.assertEqual(self.adapters['push'].sent, [])
        log = self.stored_log(result.log_id)
        self.assertEqual(log.status, 'cancelled')
        self.assertEqual(log.error_message, 'quiet hours')

    def test_quiet_hours_do_not_affect_email_or_critical(self):
        self.assertTrue(self.dispatch('email', now=LATE).success)
        self.assertTrue(self.dispatch('push', now=LATE, priority='critical').success)

    def test_missing_recipient_fails_the_channel(self):
        with notification_uow(self.factory) as store:
            store.users.get_by_id(self.user_id).phone = None

        result = self.dispatch('sms')

        self.assertEqual(result.status, 'failed')
        self.assertEqual(result.error, 'no recipient available')
        self.assertEqual(self.adapters['sms'].sent, [])
        self.assertEqual(self.stored_log(result.log_id).status, 'failed')

    def test_provider_failure(self):
        self.make_dispatcher(push=RecordingAdapter(Channel.PUSH, fail_with='InvalidRegistration'))
        result = self.dispatch('push')

        self.assertEqual(result.status, 'failed')
        log = self.stored_log(result.log_id)
        self.assertEqual(log.error_message, 'InvalidRegistration')
        self.assertIsNotNone(log.failed_at)

    def test_adapter_exception_is_contained(self):
        self.make_dispatcher(email=RecordingAdapter(Channel.EMAIL, raise_with=RuntimeError('boom')))
        result = self.dispatch('email')

        self.assertEqual(result.status, 'failed')
        self.assertEqual(result.error, 'boom')
        self.assertEqual(self.stored_log(result.log_id).status, 'failed')

    def test_send_timeout_sets_stop_event(self):
        slow = SlowAdapter(Channel.PUSH)
        self.make_dispatcher(DispatchConfig(send_timeout_seconds=0.2), push=slow)

        result = self.dispatch('push')

        self.assertEqual(result.status, 'failed')
        self.assertIn('timed out', result.error)
        self.assertTrue(slow.cancelled.wait(2))

    def test_unregistered_channel_fails_with_log(self):
        self.make_dispatcher()
        self.registry._adapters.pop(Channel.SMS)
        result = self.dispatch('sms')

        self.assertEqual(result.status, 'failed')
        self.assertIn('Unknown channel type: sms', result.error)
        self.assertEqual(self.stored_log(result.log_id).status, 'failed')

    def test_generic_template_when_type_unknown(self):
        with notification_uow(self.factory) as store:
            store.notifications.get_by_id(self.notification_id).type = 'promo_weekend'

        result = self.dispatch('push', variables={})

        self.assertTrue(result.success)
        self.assertEqual(self.adapters['push'].sent[0]['message']['title'], 'Notification')


if __name__ == '__main__':
    unittest.main()
