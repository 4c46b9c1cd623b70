# tests/test_validators.py
"""
Input validation tests
"""

from unittest.mock import Mock

from utils.validators import Validators


def test_identifier_required():
    validator = Validators()

    assert validator.validate_identifier('coach-1', 'Coach ID') == (True, None)
    assert validator.validate_identifier('', 'Coach ID') == (False, 'Coach ID is required')
    assert validator.validate_identifier('   ', 'Coach ID') == (False, 'Coach ID is required')
    assert validator.validate_identifier(None) == (False, 'ID is required')


def test_message_is_optional():
    assert Validators().validate_request_message(None) == (True, None, None)


def test_message_is_trimmed():
    assert Validators().validate_request_message('  Hi  ') == (True, 'Hi', None)
    assert Validators().validate_request_message('   ') == (True, None, None)


def test_message_length_uses_config():
    config = Mock()
    config.COACH_REQUEST_MESSAGE_MAX_LENGTH = 10
    validator = Validators(config)

    assert validator.validate_request_message('x' * 10)[0]
    is_valid, cleaned, error = validator.validate_request_message('x' * 11)
    assert not is_valid
    assert cleaned is None
    assert error == 'Message must be 10 characters or less'


def test_length_is_checked_before_trimming():
    is_valid, _, _ = Validators().validate_request_message('x' * 499 + '  ')
    assert not is_valid
