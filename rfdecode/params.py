# Video system and RF decoder parameter tables.
#
# SysParams are invariant for a given system (NTSC or PAL).  DecoderParams are
# the tunable parts, selected as a whole table (regular or lowband) and then
# adjusted by user supplied overrides.

import dataclasses
import json
import logging
from dataclasses import dataclass, field

import numpy as np

from .errors import InvalidParameter, InvalidStandard

logger = logging.getLogger("rfdecode")

SYSTEMS = ("NTSC", "PAL")


def calclinelen(SP, mult, mhz):
    if type(mhz) == str:
        mhz = getattr(SP, mhz)

    return int(np.round(SP.line_period * mhz * mult))


@dataclass(frozen=True)
class StandardParameters:
    fsc_mhz: float
    pilot_mhz: float
    frame_lines: int
    field_lines: tuple
    ire0: float
    hz_ire: float
    vsync_ire: float
    # Per the LaserDisc standard, audio frequencies are multiples of the (color) line rate
    audio_lfreq: float
    audio_rfreq: float
    colorBurstUS: tuple
    activeVideoUS: tuple
    # Known-good area for computing black SNR (line, beginning, length)
    blacksnr_slice: tuple
    # distances between the first/last eq pulses and the corresponding next lines
    firstFieldH: tuple
    numPulses: int  # number of equalization pulses per section
    hsyncPulseUS: float
    eqPulseUS: float
    vsyncPulseUS: float
    # What 0 IRE/0V should be in digital output
    outputZero: int
    # ... and what 100 IRE (white) should be
    outputWhite: int
    fieldPhases: int
    # NTSC derives the line period from the color subcarrier (227.5 cycles/line)
    line_period: float = None
    fsc_cycles_per_line: float = None
    analog_audio: bool = True

    FPS: float = field(init=False, default=0)
    line_freq_mhz: float = field(init=False, default=0)
    outlinelen: int = field(init=False, default=0)
    outlinelen_pilot: int = field(init=False, default=0)
    outfreq: float = field(init=False, default=0)
    out_scale: float = field(init=False, default=0)

    def __post_init__(self):
        # Derived values always come from the inputs, including after dataclasses.replace()
        setf = lambda k, v: object.__setattr__(self, k, v)

        if self.fsc_cycles_per_line is not None:
            setf("line_period", 1 / (self.fsc_mhz / np.double(self.fsc_cycles_per_line)))

        if self.line_period is None or self.line_period <= 0:
            raise InvalidParameter("line_period must be positive")

        setf("FPS", 1000000 / (self.frame_lines * self.line_period))
        setf("line_freq_mhz", 1 / self.line_period)
        setf("outlinelen", calclinelen(self, 4, "fsc_mhz"))
        setf("outlinelen_pilot", calclinelen(self, 4, "pilot_mhz"))
        setf("outfreq", 4 * self.fsc_mhz)
        setf("out_scale", np.double(self.outputWhite - self.outputZero) / (100 - self.vsync_ire))


_NTSC_FSC = 315.0 / np.double(88.0)
_NTSC_LINE_PERIOD = 227.5 / _NTSC_FSC
_NTSC_LINE_HZ = 1000000 * 315 / 88 / 227.5

SysParams_NTSC = StandardParameters(
    fsc_mhz=_NTSC_FSC,
    pilot_mhz=315.0 / 88.0,
    frame_lines=525,
    field_lines=(263, 262),
    ire0=8100000,
    hz_ire=1700000 / 140.0,
    vsync_ire=-40,
    audio_lfreq=_NTSC_LINE_HZ * 146.25,
    # NOTE: this changes to 2.88mhz on AC3 disks
    audio_rfreq=_NTSC_LINE_HZ * 178.75,
    colorBurstUS=(5.3, 7.8),
    # In color NTSC, the line period was changed from 63.5 to 227.5 color cycles,
    # which works out to 63.555(with a bar on top) usec
    activeVideoUS=(9.45, _NTSC_LINE_PERIOD - 1.0),
    # for NTSC pull from VSYNC
    blacksnr_slice=(1, 10, 20),
    firstFieldH=(0.5, 1),
    numPulses=6,
    hsyncPulseUS=4.7,
    eqPulseUS=2.3,
    vsyncPulseUS=27.1,
    outputZero=1024,
    outputWhite=0xC800,
    fieldPhases=4,
    fsc_cycles_per_line=227.5,
)

SysParams_PAL = StandardParameters(
    # from wikipedia: 283.75 × 15625 Hz + 25 Hz = 4.43361875 MHz
    fsc_mhz=((1 / 64) * 283.75) + (25 / 1000000),
    pilot_mhz=3.75,
    frame_lines=625,
    field_lines=(312, 313),
    line_period=64,
    ire0=7100000,
    hz_ire=800000 / 100.0,
    vsync_ire=-0.3 * (100 / 0.7),
    audio_lfreq=(1000000 / 64) * 43.75,
    audio_rfreq=(1000000 / 64) * 68.25,
    colorBurstUS=(5.6, 7.85),
    activeVideoUS=(10.5, 64 - 1.5),
    # for PAL this is blanked in mastering
    blacksnr_slice=(22, 12, 50),
    # In PAL, the first field's line sync<->first/last EQ pulse are both .5H
    firstFieldH=(1, 0.5),
    numPulses=5,
    hsyncPulseUS=4.7,
    eqPulseUS=2.35,
    vsyncPulseUS=27.3,
    outputZero=256,
    outputWhite=0xD300,
    fieldPhases=8,
)


# RFParams are tunable

@dataclass(frozen=True)
class DecoderParameters:
    # The audio notch filters are important with DD v3.0+ boards
    audio_notchwidth: float
    audio_notchorder: int
    # de-emphasis time constants (seconds).  0 disables de-emphasis.
    deemp_low: float
    deemp_high: float
    video_bpf_low: float
    video_bpf_high: float
    video_bpf_order: int
    video_lpf_freq: float
    video_lpf_order: int  # butterworth filter order
    # MTF filter
    MTF_basemult: float  # general ** level of the MTF filter for frame 0.
    MTF_poledist: float
    MTF_freq: float  # in mhz
    # used to detect rot
    video_hpf_freq: float
    video_hpf_order: int
    # audio filter parameters
    audio_filterwidth: float
    audio_filterorder: int
    # stage 2 audio de-emphasis.  75e-6 is 75usec/2133hz (matching American FM
    # emphasis) and 5.3e-6 is approx. a 30khz break frequency
    audio_deemp_low: float = 5.3e-6
    audio_deemp_high: float = 75e-6


RFParams_NTSC = DecoderParameters(
    audio_notchwidth=350000,
    audio_notchorder=2,
    deemp_low=120e-9,
    deemp_high=320e-9,
    # This BPF is similar but not *quite* identical to what Pioneer did
    video_bpf_low=3400000,
    video_bpf_high=13800000,
    video_bpf_order=4,
    # This can easily be pushed up to 4.5mhz or even a bit higher.
    # A sharp 4.8-5.0 is probably the maximum before the audio carriers bleed into 0IRE.
    video_lpf_freq=4500000,
    video_lpf_order=6,
    MTF_basemult=0.4,
    MTF_poledist=0.9,
    MTF_freq=12.2,
    video_hpf_freq=10000000,
    video_hpf_order=4,
    audio_filterwidth=150000,
    audio_filterorder=512,
)

# Settings for use with noisier disks
RFParams_NTSC_lowband = DecoderParameters(
    audio_notchwidth=350000,
    audio_notchorder=2,
    deemp_low=120e-9,
    deemp_high=320e-9,
    video_bpf_low=3800000,
    video_bpf_high=12500000,
    video_bpf_order=4,
    video_lpf_freq=4200000,
    video_lpf_order=6,
    MTF_basemult=0.4,
    MTF_poledist=0.9,
    MTF_freq=12.2,
    video_hpf_freq=10000000,
    video_hpf_order=4,
    audio_filterwidth=150000,
    audio_filterorder=512,
)

RFParams_PAL = DecoderParameters(
    audio_notchwidth=200000,
    audio_notchorder=2,
    deemp_low=100e-9,
    deemp_high=400e-9,
    # XXX: guessing here!
    video_bpf_low=2300000,
    video_bpf_high=13500000,
    video_bpf_order=2,
    video_lpf_freq=5200000,
    video_lpf_order=7,
    MTF_basemult=1.0,
    MTF_poledist=0.70,
    MTF_freq=10,
    video_hpf_freq=10000000,
    video_hpf_order=4,
    audio_filterwidth=100000,
    audio_filterorder=900,
)

RFParams_PAL_lowband = DecoderParameters(
    audio_notchwidth=200000,
    audio_notchorder=2,
    deemp_low=100e-9,
    deemp_high=400e-9,
    video_bpf_low=3200000,
    video_bpf_high=13000000,
    video_bpf_order=1,
    video_lpf_freq=4800000,
    video_lpf_order=7,
    MTF_basemult=1.0,
    MTF_poledist=0.70,
    MTF_freq=10,
    video_hpf_freq=10000000,
    video_hpf_order=4,
    audio_filterwidth=100000,
    audio_filterorder=900,
)

_SYSPARAMS = {"NTSC": SysParams_NTSC, "PAL": SysParams_PAL}
_RFPARAMS = {
    ("NTSC", False): RFParams_NTSC,
    ("NTSC", True): RFParams_NTSC_lowband,
    ("PAL", False): RFParams_PAL,
    ("PAL", True): RFParams_PAL_lowband,
}

# Options consumed by RFDecode itself rather than by the parameter tables
ENGINE_BOOLS = ("lowband", "NTSC_ColorNotchFilter", "PAL_V4300D_NotchFilter")
ENGINE_FLOATS = ("MTF_level", "MTF_offset")

# Overrides with their own semantics (see apply_overrides)
SPECIAL_FLOATS = ("audio_filterwidth", "deemp_adjust", "deemp_low", "deemp_high")

_ORDER_FIELDS = ("audio_notchorder", "video_bpf_order", "video_lpf_order", "video_hpf_order", "audio_filterorder")


def get_standard(system):
    try:
        return _SYSPARAMS[system]
    except (KeyError, TypeError):
        raise InvalidStandard("Unknown video system %r (must be one of %s)" % (system, ", ".join(SYSTEMS)))


def get_decoder_params(system, lowband=False):
    """ Select the (complete) decoder table for system.  lowband swaps in the whole
    alternate table used for lower-bandwidth/noisier disks. """
    get_standard(system)

    return _RFPARAMS[(system, bool(lowband))]


def validate_decoder_params(DP):
    """ Check DecoderParameters for values that can't produce usable filters """
    for name in _ORDER_FIELDS:
        v = getattr(DP, name)
        if int(v) != v or v < 1:
            raise InvalidParameter("%s must be a positive integer, got %r" % (name, v))

    for name in ("audio_notchwidth", "video_bpf_low", "video_bpf_high", "video_lpf_freq",
                 "video_hpf_freq", "audio_filterwidth", "MTF_freq"):
        if not getattr(DP, name) > 0:
            raise InvalidParameter("%s must be positive, got %r" % (name, getattr(DP, name)))

    for name in ("deemp_low", "deemp_high", "audio_deemp_low", "audio_deemp_high", "MTF_basemult"):
        if getattr(DP, name) < 0:
            raise InvalidParameter("%s must not be negative, got %r" % (name, getattr(DP, name)))

    if DP.video_bpf_low >= DP.video_bpf_high:
        raise InvalidParameter(
            "video_bpf_low (%r) must be below video_bpf_high (%r)" % (DP.video_bpf_low, DP.video_bpf_high)
        )

    if not (0 <= DP.MTF_poledist < 1):
        raise InvalidParameter("MTF_poledist must be in [0, 1), got %r" % DP.MTF_poledist)

    return DP


def _coerce(DP, name, value):
    if name in _ORDER_FIELDS:
        if isinstance(value, bool) or int(value) != value:
            raise InvalidParameter("%s must be an integer, got %r" % (name, value))
        return int(value)

    try:
        return float(value)
    except (TypeError, ValueError):
        raise InvalidParameter("%s must be numeric, got %r" % (name, value))


def apply_overrides(SP, DP, bool_overrides=None, int_overrides=None, float_overrides=None):
    """ Apply user overrides on top of the selected tables.

    SP and DP are expected to be the unmodified tables: the de-emphasis rules
    (deemp_low falls back to 0, deemp_adjust scales) are relative to them, so
    feeding an already overridden DP back in would apply them twice.

    Returns new (SysParams, DecoderParams); the inputs are left untouched.
    """
    bool_overrides = bool_overrides or {}
    numeric = {}
    numeric.update(int_overrides or {})
    numeric.update(float_overrides or {})

    for k in bool_overrides:
        if k not in ENGINE_BOOLS + ("analog_audio",):
            raise InvalidParameter("Unknown boolean option %r" % k)

    sp_fields = {f.name for f in dataclasses.fields(StandardParameters) if f.init}
    dp_fields = {f.name for f in dataclasses.fields(DecoderParameters)}

    sp_changes = {}
    dp_changes = {}

    if "analog_audio" in bool_overrides:
        sp_changes["analog_audio"] = bool(bool_overrides["analog_audio"])

    for k, v in numeric.items():
        if k in SPECIAL_FLOATS or k in ENGINE_FLOATS:
            continue
        elif k in dp_fields:
            dp_changes[k] = _coerce(DP, k, v)
        elif k in sp_fields:
            if isinstance(v, bool) or not np.isfinite(v):
                raise InvalidParameter("%s must be a finite number, got %r" % (k, v))
            sp_changes[k] = v
        else:
            raise InvalidParameter("Unknown option %r" % k)

    if "line_period" in sp_changes:
        # an explicit line period wins over the NTSC subcarrier-derived one
        sp_changes["fsc_cycles_per_line"] = None

    if sp_changes:
        # replace() re-runs __post_init__, so derived values follow their inputs
        SP = dataclasses.replace(SP, **sp_changes)

    # Recognized overrides with their own semantics

    fw = numeric.get("audio_filterwidth", 0)
    if fw is not None and fw < 0:
        raise InvalidParameter("audio_filterwidth must be positive, got %r" % fw)
    if fw is not None and fw > 0:
        dp_changes["audio_filterwidth"] = float(fw)

    # Video de-emphasis: deemp_low is only in effect when given, deemp_high
    # keeps the table value unless given.
    deemp_low = 0
    if numeric.get("deemp_low") is not None and numeric["deemp_low"] > 0:
        deemp_low = float(numeric["deemp_low"])

    deemp_high = DP.deemp_high
    if numeric.get("deemp_high") is not None:
        if numeric["deemp_high"] < 0:
            raise InvalidParameter("deemp_high must not be negative, got %r" % numeric["deemp_high"])
        deemp_high = float(numeric["deemp_high"])

    audio_deemp = [dp_changes.get(name, getattr(DP, name)) for name in ("audio_deemp_low", "audio_deemp_high")]

    # deemp_adjust scales every de-emphasis time constant, video and audio alike
    k = numeric.get("deemp_adjust")
    if k is not None:
        if isinstance(k, bool) or not np.isfinite(k) or k < 0:
            raise InvalidParameter("deemp_adjust must be a non-negative number, got %r" % (k,))
        deemp_low *= k
        deemp_high *= k
        audio_deemp = [c * k for c in audio_deemp]

    dp_changes["deemp_low"] = deemp_low
    dp_changes["deemp_high"] = deemp_high
    dp_changes["audio_deemp_low"], dp_changes["audio_deemp_high"] = audio_deemp

    changed = {k: v for k, v in dp_changes.items() if getattr(DP, k) != v}
    if sp_changes or changed:
        logger.debug("Parameter overrides: sys_params %s, rf_params %s", sp_changes, changed)

    DP = validate_decoder_params(dataclasses.replace(DP, **dp_changes))

    return SP, DP


def build_params(system, lowband=False, bool_overrides=None, int_overrides=None, float_overrides=None):
    """ Select the SysParams/DecoderParams tables for system and apply overrides.

    system   -- "NTSC" or "PAL"
    lowband  -- use the lowband decoder table (also honoured as bool_overrides["lowband"])
    """
    bool_overrides = bool_overrides or {}
    lowband = lowband or bool_overrides.get("lowband", False)

    SP = get_standard(system)
    DP = get_decoder_params(system, lowband)

    return apply_overrides(SP, DP, bool_overrides, int_overrides, float_overrides)


def _override_group(json_input, group_name, maps):
    """Sort a group of JSON parameters into the bool/int/float override maps"""
    changed = {}
    bools, ints, floats = maps

    for item, value in json_input.get(group_name, {}).items():
        if isinstance(value, bool):
            bools[item] = value
        elif isinstance(value, int):
            ints[item] = value
        elif isinstance(value, float):
            floats[item] = value
        else:
            raise InvalidParameter("%s.%s: unsupported value %r" % (group_name, item, value))

        changed[item] = value

    if len(changed) > 0:
        logger.debug("Loaded %s in %s", changed, group_name)


def load_overrides_json(fp):
    """Read overrides from an open JSON file.

    The file holds an object with optional "sys_params", "rf_params" and "options"
    groups.  Returns (bool_overrides, int_overrides, float_overrides).
    """
    json_input = json.load(fp)
    maps = ({}, {}, {})

    for group_name in ("sys_params", "rf_params", "options"):
        _override_group(json_input, group_name, maps)

    return maps
