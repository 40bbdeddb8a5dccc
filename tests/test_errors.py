import pytest

from conglue import errors


def test_message_carries_operation_and_path():
    err = errors.ConDecodeError("bad line", operation="read_all_frames", path="a.con")
    assert str(err) == "read_all_frames a.con: bad line"
    assert err.operation == "read_all_frames"
    assert err.path == "a.con"


def test_plain_message():
    assert str(errors.BuildError("no atoms were added")) == "no atoms were added"


@pytest.mark.parametrize(
    "cls, bases",
    [
        (errors.ConOpenError, (OSError,)),
        (errors.ConDecodeError, (ValueError,)),
        (errors.BuildError, (ValueError,)),
        (errors.WriteError, (OSError,)),
        (errors.MaterializationError, (RuntimeError,)),
        (errors.BuilderConsumedError, (errors.UsageError, RuntimeError)),
        (errors.IteratorExhaustedError, (errors.UsageError, RuntimeError)),
    ],
)
def test_taxonomy(cls, bases):
    assert issubclass(cls, errors.ConError)
    for base in bases:
        assert issubclass(cls, base)
