#!/usr/bin/env python3
"""
Tests for DeliveryLogger status transitions.

Usage:
    python -m pytest tests/unit/notification/test_delivery_log.py -v
"""

import unittest
from datetime import timedelta

from database.models import DeliveryStatus
from database.uow import notification_uow
from notification.delivery_log import DeliveryLogger
from notification.exceptions import InvalidStatusTransition
from tests import NOW, add_user, make_test_session_factory


class TestDeliveryLogger(unittest.TestCase):

    def setUp(self):
        self.factory = make_test_session_factory()
        self.user_id = add_user(self.factory)
        with notification_uow(self.factory) as store:
            notification = store.notifications.create(
                user_id=self.user_id, type='booking_accepted', title='t', message='m', created_at=NOW
            )
            self.notification_id = notification.id

    def open_log(self, store, channel='push'):
        return DeliveryLogger(store.logs).open(
            notification_id=self.notification_id,
            user_id=self.user_id,
            type='booking_accepted',
            channel=channel,
            now=NOW,
        )

    def test_happy_path_sets_timestamps(self):
        with notification_uow(self.factory) as store:
            writer = DeliveryLogger(store.logs)
            log = self.open_log(store)
            self.assertEqual(log.status, 'pending')
            self.assertEqual(log.attempts, 0)

            writer.transition(log, DeliveryStatus.PROCESSING, now=NOW)
            self.assertEqual(log.attempts, 1)
            writer.transition(log, DeliveryStatus.SENT, now=NOW, provider_message_id='fcm-1')
            self.assertEqual(log.sent_at, NOW)
            self.assertEqual(log.provider_message_id, 'fcm-1')

            later = NOW + timedelta(minutes=2)
            writer.transition(log, DeliveryStatus.OPENED, now=later)
            self.assertEqual(log.opened_at, later)
            self.assertEqual(log.delivered_at, later)
            log_id = log.id

        with notification_uow(self.factory) as store:
            stored = store.logs.get_by_id(log_id)
            self.assertEqual(stored.status, 'opened')

    def test_failure_records_error(self):
        with notification_uow(self.factory) as store:
            writer = DeliveryLogger(store.logs)
            log = self.open_log(store)
            writer.transition(log, DeliveryStatus.PROCESSING, now=NOW)
            writer.transition(log, DeliveryStatus.FAILED, now=NOW, error='invalid token')
            self.assertEqual(log.failed_at, NOW)
            self.assertEqual(log.error_message, 'invalid token')

    def test_status_never_moves_backwards(self):
        with notification_uow(self.factory) as store:
            writer = DeliveryLogger(store.logs)
            log = self.open_log(store)
            writer.transition(log, DeliveryStatus.PROCESSING, now=NOW)
            writer.transition(log, DeliveryStatus.SENT, now=NOW)
            writer.transition(log, DeliveryStatus.DELIVERED, now=NOW)

            for target in (DeliveryStatus.SENT, DeliveryStatus.PENDING, DeliveryStatus.FAILED):
                with self.assertRaises(InvalidStatusTransition):
                    writer.transition(log, target, now=NOW)
            self.assertEqual(log.status, 'delivered')

    def test_terminal_states_are_final(self):
        with notification_uow(self.factory) as store:
            writer = DeliveryLogger(store.logs)
            log = self.open_log(store)
            writer.transition(log, DeliveryStatus.CANCELLED, now=NOW, error='quiet hours')
            with self.assertRaises(InvalidStatusTransition):
                writer.transition(log, DeliveryStatus.PROCESSING, now=NOW)

    def test_record_event(self):
        with notification_uow(self.factory) as store:
            writer = DeliveryLogger(store.logs)
            log = self.open_log(store, channel='email')
            writer.transition(log, DeliveryStatus.PROCESSING, now=NOW)
            writer.transition(log, DeliveryStatus.SENT, now=NOW)
            log_id = log.id

        with notification_uow(self.factory) as store:
            writer = DeliveryLogger(store.logs)
            self.assertEqual(writer.record_event(log_id, 'delivered', now=NOW).status, 'delivered')
            with self.assertRaises(ValueError):
                writer.record_event(log_id, 'bounced')
            with self.assertRaises(LookupError):
                writer.record_event(9999, 'opened')

    def test_record_event_on_pending_log_is_rejected(self):
        with notification_uow(self.factory) as store:
            log = self.open_log(store)
            with self.assertRaises(InvalidStatusTransition):
                DeliveryLogger(store.logs).record_event(log.id, 'opened')


if __name__ == '__main__':
    unittest.main()
