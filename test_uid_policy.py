#!/usr/bin/env python3
"""
Tests for the UID visibility policy
Run: pytest test_uid_policy.py
"""

from uid_policy import build_allowed_uids, is_uid_allowed, parse_uid_list


def test_user_plus_root():
    assert build_allowed_uids('user+root', None, 1000) == {0, 1000}


def test_user_only():
    assert build_allowed_uids('USER', None, 1000) == {1000}


def test_all_means_no_filter():
    allowed = build_allowed_uids('all', None, 1000)
    assert allowed is None
    assert is_uid_allowed(12345, allowed)
    assert is_uid_allowed(None, allowed)


def test_unknown_mode_behaves_as_all():
    assert build_allowed_uids('everyone', None, 1000) is None
    assert build_allowed_uids(None, None, 1000) is None


def test_explicit_list_wins_over_mode():
    assert build_allowed_uids('user', "5, 7,7", 1000) == {5, 7}


def test_explicit_list_that_parses_empty_falls_back_to_own_uid():
    assert build_allowed_uids('all', " , abc,", 1000) == {1000}


def test_blank_explicit_list_is_ignored():
    assert build_allowed_uids('user+root', "   ", 42) == {0, 42}


def test_unreadable_uid_is_rejected_by_allow_list():
    assert not is_uid_allowed(None, frozenset({0}))
    assert not is_uid_allowed(5, frozenset({0}))
    assert is_uid_allowed(0, frozenset({0}))


def test_parse_uid_list():
    assert parse_uid_list("1,2, 3 ,x,,2") == {1, 2, 3}
