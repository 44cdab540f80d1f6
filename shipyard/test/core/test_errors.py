from shipyard.core.errors import ErrorCode


def test_exit_code_values_are_stable() -> None:
    assert int(ErrorCode.OK) == 0
    assert int(ErrorCode.FAILURE) == 1
    assert int(ErrorCode.USAGE) == 2


def test_is_success() -> None:
    assert ErrorCode.OK.is_success
    assert not ErrorCode.FAILURE.is_success


def test_str() -> None:
    assert str(ErrorCode.USAGE) == "usage"
