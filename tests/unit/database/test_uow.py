#!/usr/bin/env python3
"""
Tests for the dispatch unit of work.
"""

import unittest
from unittest.mock import MagicMock

from database.repositories import TenantRepository
from database.uow import dispatch_uow


class TestDispatchUow(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()
        self.factory = MagicMock(return_value=self.session)

    def test_commits_and_closes_on_success(self):
        with dispatch_uow(self.factory) as repos:
            self.assertIsInstance(repos.tenants, TenantRepository)
            self.assertIs(repos.tenants.db, self.session)

        self.session.commit.assert_called_once()
        self.session.rollback.assert_not_called()
        self.session.close.assert_called_once()

    def test_rolls_back_and_reraises(self):
        with self.assertRaises(RuntimeError):
            with dispatch_uow(self.factory):
                raise RuntimeError("boom")

        self.session.commit.assert_not_called()
        self.session.rollback.assert_called_once()
        self.session.close.assert_called_once()

    def test_fresh_session_per_scope(self):
        with dispatch_uow(self.factory):
            pass
        with dispatch_uow(self.factory):
            pass
        self.assertEqual(self.factory.call_count, 2)


if __name__ == '__main__':
    unittest.main()
