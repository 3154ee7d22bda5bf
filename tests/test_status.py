"""
Tests for the status board.
"""

import pytest

from attendance_device.status import StatusBoard, StatusKind


def test_initial_status_is_idle():
    assert StatusBoard().get_status()['kind'] == 'idle'


def test_commands_are_fifo():
    board = StatusBoard()
    board.submit_command('sync')
    board.submit_command('enroll')

    assert board.next_command() == 'sync'
    assert board.next_command() == 'enroll'
    assert board.next_command() is None


def test_unknown_command_rejected():
    with pytest.raises(ValueError):
        StatusBoard().submit_command('format')


def test_set_status_updates_message():
    board = StatusBoard()
    board.set_status(StatusKind.STORED, 'Stored (1/3)')

    assert board.get_status()['message'] == 'Stored (1/3)'
