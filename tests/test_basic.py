import importlib

import rfdecode


def test_version_is_set():
    assert isinstance(rfdecode.__version__, str)
    assert rfdecode.__version__.count(".") >= 1


def test_can_import_key_modules():
    for mod in rfdecode.__all__:
        importlib.import_module(f"rfdecode.{mod}")


def test_errors_are_value_errors():
    from rfdecode import errors

    for exc in (
        errors.InvalidStandard,
        errors.InvalidParameter,
        errors.InconsistentConfiguration,
        errors.BlockSizeMismatch,
    ):
        assert issubclass(exc, errors.RFDecodeError)
        assert issubclass(exc, ValueError)
