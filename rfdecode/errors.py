# Exceptions raised by the RF decoder.  Configuration problems are caught when
# an RFDecode object is built, never on the first block.


class RFDecodeError(Exception):
    pass


class InvalidStandard(RFDecodeError, ValueError):
    """ Video system name other than NTSC or PAL """


class InvalidParameter(RFDecodeError, ValueError):
    """ Override or construction value outside of its valid range """


class InconsistentConfiguration(RFDecodeError, ValueError):
    """ Option combination that can't be decoded (i.e. audio decode without audio carriers) """


class BlockSizeMismatch(RFDecodeError, ValueError):
    """ Block handed to demodblock doesn't match the FFT length """
