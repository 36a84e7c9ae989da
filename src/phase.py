# http://pyrocko.org - GPLv3
#
# The Pyrocko Developers, 21st Century
# ---|P------/S----------~Lg----------

'''
Seismic phase names and their decomposition into path parts.

A phase name like ``PKiKP`` or ``S^410S`` is translated into an ordered
sequence of *path parts*. Legs (:py:class:`GeneralPart`) alternate with
interactions (:py:class:`Located`, :py:class:`Arbitrary` and
:py:class:`LocatedDiffracted`). The sequence always starts with the emission
at the source.

**Phase grammar**

======== ===================================================================
symbol   meaning
======== ===================================================================
``P S``  P or S leg in the mantle (or crust)
``p s``  upgoing P or S leg in the mantle, only first or after a depth
``K``    P leg in the outer core
``I J``  P or S leg in the inner core
``c``    reflection at the core-mantle boundary (CMB) from above
``i``    reflection at the inner core boundary (ICB) from above
``^d``   reflection from below at a depth of ``d`` [km]
``vd``   reflection from above at a depth of ``d`` [km]
``d``    transmission at a depth of ``d`` [km]
``diff`` diffraction along the CMB, optionally followed by an angle [deg]
``(nX)`` ``X`` repeated ``n`` times, e.g. ``S(2K)S`` is ``SKKS``
======== ===================================================================

S legs are SH unless the phase contains ``P`` or ``K`` or P-SV is requested
explicitly.
'''

import re
import enum
import math
import logging
import functools
from collections import namedtuple

from .error import InvalidPhaseName, InternalConsistencyError


logger = logging.getLogger('anisoray.phase')


class Partition(enum.Enum):
    INNER_CORE = 1
    OUTER_CORE = 2
    MANTLE = 3


class PhasePart(enum.Enum):
    '''
    Wave type of a leg.
    '''

    P = 1
    SV = 2
    SH = 4
    K = 8
    I = 16  # noqa
    JV = 32

    @property
    def partition(self):
        if self in (PhasePart.P, PhasePart.SV, PhasePart.SH):
            return Partition.MANTLE
        elif self is PhasePart.K:
            return Partition.OUTER_CORE
        else:
            return Partition.INNER_CORE

    @property
    def is_psv(self):
        return self is not PhasePart.SH

    @classmethod
    def in_partition(cls, partition):
        return tuple(pp for pp in cls if pp.partition is partition)


class PassPoint(enum.Enum):
    SEISMIC_SOURCE = 1
    EARTH_SURFACE = 2
    BOUNCE_POINT = 3
    CMB = 4
    ICB = 5
    OTHER = 6


class Interaction(enum.Enum):
    EMISSION = 1
    TRANSMISSION = 2
    TOPSIDE_REFLECTION = 3
    BOTTOMSIDE_REFLECTION = 4
    PENETRATION = 5
    BOUNCE = 6
    DIFFRACTION = 7


class _ValueTuple(tuple):
    '''
    Mixin giving value semantics which include the variant type.
    '''

    __slots__ = ()

    def __eq__(self, other):
        return type(self) is type(other) and tuple.__eq__(self, other)

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash((type(self).__name__, tuple(self)))


class Located(_ValueTuple, namedtuple(
        'LocatedBase', 'interaction pass_point')):
    '''
    Interaction at a fixed point of the structure.
    '''

    __slots__ = ()

    def __repr__(self):
        return 'Located.%s' % g_located_names.get(self, '?')

    __str__ = __repr__


Located.EMISSION = Located(Interaction.EMISSION, PassPoint.SEISMIC_SOURCE)
Located.SURFACE_REFLECTION = Located(
    Interaction.BOTTOMSIDE_REFLECTION, PassPoint.EARTH_SURFACE)
Located.BOUNCE = Located(Interaction.BOUNCE, PassPoint.BOUNCE_POINT)
Located.REFLECTION_C = Located(
    Interaction.TOPSIDE_REFLECTION, PassPoint.CMB)
Located.CMB_PENETRATION = Located(Interaction.PENETRATION, PassPoint.CMB)
Located.ICB_PENETRATION = Located(Interaction.PENETRATION, PassPoint.ICB)
Located.REFLECTION_K = Located(
    Interaction.BOTTOMSIDE_REFLECTION, PassPoint.CMB)
Located.OUTERCORE_SIDE_REFLECTION = Located(
    Interaction.TOPSIDE_REFLECTION, PassPoint.ICB)
Located.INNERCORE_SIDE_REFLECTION = Located(
    Interaction.BOTTOMSIDE_REFLECTION, PassPoint.ICB)

g_located_names = dict(
    (getattr(Located, k), k) for k in (
        'EMISSION', 'SURFACE_REFLECTION', 'BOUNCE', 'REFLECTION_C',
        'CMB_PENETRATION', 'ICB_PENETRATION', 'REFLECTION_K',
        'OUTERCORE_SIDE_REFLECTION', 'INNERCORE_SIDE_REFLECTION'))


class GeneralPart(_ValueTuple, namedtuple(
        'GeneralPartBase',
        'phase_part downward inner_depth outer_depth inner_point '
        'outer_point')):
    '''
    One leg of a phase.

    Depths [km] are only used where the corresponding pass point is
    :py:attr:`PassPoint.OTHER`.
    '''

    __slots__ = ()

    def __repr__(self):
        return 'GeneralPart(%s, %s, %s[%g] - %s[%g])' % (
            self.phase_part.name,
            'down' if self.downward else 'up',
            self.inner_point.name, self.inner_depth,
            self.outer_point.name, self.outer_depth)

    __str__ = __repr__


class Arbitrary(_ValueTuple, namedtuple(
        'ArbitraryBase', 'interaction depth')):
    '''
    Interaction at an arbitrary depth [km].
    '''

    __slots__ = ()

    @property
    def pass_point(self):
        return PassPoint.OTHER

    @classmethod
    def transmission(cls, depth):
        return cls(Interaction.TRANSMISSION, depth)

    @classmethod
    def topside_reflection(cls, depth):
        return cls(Interaction.TOPSIDE_REFLECTION, depth)

    @classmethod
    def bottomside_reflection(cls, depth):
        return cls(Interaction.BOTTOMSIDE_REFLECTION, depth)

    def __repr__(self):
        return 'Arbitrary(%s, %g)' % (self.interaction.name, self.depth)

    __str__ = __repr__


class LocatedDiffracted(_ValueTuple, namedtuple(
        'LocatedDiffractedBase', 'phase_part angle')):
    '''
    Diffraction along the CMB over ``angle`` [rad].
    '''

    __slots__ = ()

    @property
    def interaction(self):
        return Interaction.DIFFRACTION

    @property
    def pass_point(self):
        return PassPoint.CMB

    @classmethod
    def cmb_diffraction(cls, phase_part, angle):
        return cls(phase_part, angle)

    def __repr__(self):
        return 'LocatedDiffracted(%s, %g deg)' % (
            self.phase_part.name, math.degrees(self.angle))

    __str__ = __repr__


path_part_types = (Located, GeneralPart, Arbitrary, LocatedDiffracted)


def check_path_part(part):
    if type(part) not in path_part_types:
        raise InternalConsistencyError(
            'unknown path part type: %s' % type(part).__name__)

    return part


def depth_of(part):
    '''
    Depth [km] of an interaction, zero for interactions at fixed points.
    '''

    check_path_part(part)
    if isinstance(part, Arbitrary):
        return part.depth
    elif isinstance(part, GeneralPart):
        raise InternalConsistencyError('a leg has no single depth')
    else:
        return 0.0


# Validity rules operate on the expanded phase name.

re_others = re.compile(r'[abeghj-oqrtuw-zA-HL-OQRT-Z]|[^\w.^]', re.ASCII)
re_repetition = re.compile(r'\((\d*)([^\d]+?)\)')
re_nest_parentheses = re.compile(r'\([^)]*\(|\)[^(]*\)')
re_first_letter = re.compile(r'^[^psSP]')
re_final_letter = re.compile(r'[^psSP]$')
re_ps = re.compile(r'\D[ps]')
re_next_c = re.compile(r'[^PS]c|c[^PS]|[^PSps\d][PS]c|c[PS][^\^\dPS]')
re_cmb_conversion = re.compile(r'PcS|ScP')
re_next_k = re.compile(
    r'[^PSKiIJ]K[^PSKiIJ]|[^\dpsPS][PS]K|K[PS][^\^\dPS]')
re_next_j = re.compile(r'[^\dIJK][IJ]|[IJ][^\^\dvIJK]')
re_small_i = re.compile(r'[^Kd]i|i[^fK]|[^PSK]Ki|iK[^KPS]')
re_mantle_p = re.compile(r'^P$|^P[PS]|[psPS]P$|[psPS]P[PS]')
re_mantle_s = re.compile(r'^S$|^S[PS]|[psPS]S$|[psPS]S[PS]')
re_p_diff = re.compile(r'Pdiff\d*(\.\d+)?$')
re_s_diff = re.compile(r'Sdiff\d*(\.\d+)?$')
re_diff_rule = re.compile(r'diff.+diff|P.*Pdiff|S.*Sdiff|diff.*[^\d]$')
re_cmb_p = re.compile(r'Pc|cP')
re_cmb_s = re.compile(r'Sc|cS')
re_outercore_p = re.compile(r'PK|KP')
re_outercore_s = re.compile(r'SK|KS')
re_outercore = re.compile(r'K\d|[PSK]K[\^PSK]')
re_outercore_depth = re.compile(r'K[\d.]++[^K]')
re_mantle_depth = re.compile(r'[pPsS]\d++(\.\d++)?+[^pPsS]')
re_upgoing_transmission = re.compile(
    r'(?:[ps]|[cK][PS]|v[\d.]+[PS])\d[\d.]*[PS]')
re_bottom_side = re.compile(r'[pPsS]\^\d++(\.\d++)?+[^PS]')
re_top_side = re.compile(
    r'[ps]v|[PS]v\d++(\.\d++)?+[^pPsS]|[PS]v\d++(\.\d++)?+[pPsS]c')
re_both_side = re.compile(
    r'K[\^|v]\d++(\.\d++)?+[^K]|[IJ][\^|v]\d++(\.\d++)?+[^IJ]')
re_modifier_without_depth = re.compile(r'[\^v](?!\d)')
re_core_transmission = re.compile(r'[KIJ]\d')
re_diff_angle = re.compile(r'diff[\d.]+')

g_rules = [
    (re_others, 'unknown symbol'),
    (re_first_letter, 'must start with p, s, P or S'),
    (re_ps, 'p and s must be first or follow a depth'),
    (re_next_c, 'c must be between P or S legs'),
    (re_cmb_conversion, 'reflection at the CMB must keep the wave type'),
    (re_next_k, 'bad neighbours of K'),
    (re_next_j, 'bad neighbours of I or J'),
    (re_small_i, 'i must be between K legs'),
    (re_modifier_without_depth, '^ and v must be followed by a depth'),
    (re_core_transmission, 'transmissions in the core are not supported'),
    (re_outercore_depth, 'bad depth after K'),
    (re_mantle_depth, 'bad depth in the mantle'),
    (re_upgoing_transmission,
     'an upgoing leg continues upgoing after a transmission'),
    (re_bottom_side, 'bad reflection from below'),
    (re_top_side, 'bad reflection from above'),
    (re_both_side, 'bad reflection in the core')]


def expand_parentheses(name):
    '''
    Expand repetition groups, e.g. ``S(2K)S`` becomes ``SKKS``.
    '''

    if re_nest_parentheses.search(name):
        raise InvalidPhaseName(name, 'nested parentheses')

    def repl(m):
        n = int(m.group(1)) if m.group(1) else 1
        return m.group(2) * n

    return re_repetition.sub(repl, name)


def check_validity(expanded):
    '''
    Check an expanded phase name against the grammar rules.

    :returns: ``None`` if valid, otherwise the reason why it is not
    '''

    if not expanded:
        return 'empty name'

    if re_diff_rule.search(expanded):
        return 'diffraction must be the last part and may appear only once'

    if not re_p_diff.search(expanded) and not re_s_diff.search(expanded) \
            and re_final_letter.search(expanded):
        return 'must end with p, s, P, S or a diffraction'

    for rule, reason in g_rules:
        if rule.search(expanded):
            return reason

    icb = 'Ki' in expanded or 'iK' in expanded
    innercore_p = 'I' in expanded
    innercore_s = 'J' in expanded

    if re_mantle_p.search(expanded):
        if re_cmb_p.search(expanded) or re_outercore_p.search(expanded) \
                or innercore_p:
            return 'mixes mantle P with core legs'

    if re_mantle_s.search(expanded):
        if re_cmb_s.search(expanded) or re_outercore_s.search(expanded) \
                or innercore_s:
            return 'mixes mantle S with core legs'

    if re_outercore.search(expanded):
        if innercore_p or icb or innercore_s:
            return 'mixes outer core reflections with inner core legs'

    return None


def is_valid(name):
    '''
    Check if a phase name is valid.
    '''

    try:
        expanded = expand_parentheses(name)
    except InvalidPhaseName:
        return False

    return check_validity(expanded) is None


# Phase name tokenizer and path part state machine.

class Symbol(enum.Enum):
    UPGOING_MANTLE = 1
    MANTLE = 2
    OUTER_CORE = 3
    INNER_CORE = 4
    MARKER = 5
    DIFFRACTION = 6


class State(enum.Enum):
    EMISSION = 1
    TRANSMISSION = 2
    TOPSIDE_REFLECTION = 3
    BOTTOMSIDE_REFLECTION = 4
    CMB_PENETRATION = 5
    ICB_PENETRATION = 6
    DIFFRACTION = 7


g_symbol_classes = {
    'p': Symbol.UPGOING_MANTLE,
    's': Symbol.UPGOING_MANTLE,
    'P': Symbol.MANTLE,
    'S': Symbol.MANTLE,
    'K': Symbol.OUTER_CORE,
    'I': Symbol.INNER_CORE,
    'J': Symbol.INNER_CORE,
    'c': Symbol.MARKER,
    'i': Symbol.MARKER,
    'diff': Symbol.DIFFRACTION}


class Token(namedtuple('TokenBase', 'char modifier depth position')):
    '''
    Phase symbol with its trailing modifier (``'^'``, ``'v'`` or ``None``)
    and depth or diffraction angle.
    '''

    __slots__ = ()

    @property
    def symbol(self):
        return g_symbol_classes[self.char]


END = Token(None, None, None, -1)

re_token = re.compile(r'(diff|[a-zA-Z])([\^v](?=\d))?([\d.]*)')


def tokenize(expanded):
    tokens = []
    pos = 0
    while pos < len(expanded):
        m = re_token.match(expanded, pos)
        if not m or m.group(1) not in g_symbol_classes:
            raise InternalConsistencyError(
                'unexpected character at position %i of "%s"' % (
                    pos+1, expanded))

        char, modifier, number = m.groups()
        depth = float(number) if number else None
        tokens.append(Token(char, modifier, depth, pos))
        pos = m.end()

    return tokens


class PartBuilder(object):
    '''
    State machine emitting the path parts of an expanded phase name.

    The transition table is keyed by ``(symbol class, state)`` where the
    state is the kind of the latest interaction. Entries not in the table
    are grammar states which the validity rules exclude.
    '''

    def __init__(self, expanded, psv):
        self.expanded = expanded
        self.psv = psv
        self.parts = [Located.EMISSION]
        self.state = State.EMISSION

    def fail(self, token, what='unexpected'):
        raise InternalConsistencyError(
            '%s "%s" at position %i of "%s" (state %s)' % (
                what, token.char, token.position+1, self.expanded,
                self.state.name))

    def wave(self, char):
        if char in 'pP':
            return PhasePart.P
        elif char in 'sS':
            return PhasePart.SV if self.psv else PhasePart.SH
        elif char == 'K':
            return PhasePart.K
        elif char == 'I':
            return PhasePart.I
        elif char == 'J':
            return PhasePart.JV

    @property
    def last(self):
        return self.parts[-1]

    def last_leg(self):
        for part in reversed(self.parts):
            if isinstance(part, GeneralPart):
                return part

        return None

    def emit(self, *parts):
        self.parts.extend(check_path_part(part) for part in parts)

    def emit_interaction(self, part):
        self.emit(part)
        if isinstance(part, LocatedDiffracted):
            self.state = State.DIFFRACTION
        elif part.interaction is Interaction.PENETRATION:
            self.state = State.CMB_PENETRATION \
                if part.pass_point is PassPoint.CMB \
                else State.ICB_PENETRATION
        else:
            self.state = {
                Interaction.TRANSMISSION: State.TRANSMISSION,
                Interaction.TOPSIDE_REFLECTION: State.TOPSIDE_REFLECTION,
                Interaction.BOTTOMSIDE_REFLECTION:
                    State.BOTTOMSIDE_REFLECTION}[part.interaction]

    def origin(self):
        '''
        Pass point and depth where the next leg starts.
        '''

        if self.state is State.EMISSION:
            return PassPoint.SEISMIC_SOURCE, 0.0

        return self.last.pass_point, depth_of(self.last)

    def check_transmission_direction(self, token, downward):
        if self.state is State.TRANSMISSION \
                and self.last_leg().downward != downward:

            self.fail(token, 'direction changes at a transmission with')

    def bounce(self, pp, outer_depth, outer_point, depth_up, point_up):
        self.emit(
            GeneralPart(pp, True, 0.0, outer_depth, PassPoint.BOUNCE_POINT,
                        outer_point),
            Located.BOUNCE,
            GeneralPart(pp, False, 0.0, depth_up, PassPoint.BOUNCE_POINT,
                        point_up))

    # transitions

    def upgoing_mantle(self, token, following):
        pp = self.wave(token.char)
        self.check_transmission_direction(token, False)
        inner_point, inner_depth = self.origin()
        if token.modifier == 'v':
            self.fail(token)

        elif token.modifier == '^' or token.depth is not None:
            self.emit(GeneralPart(
                pp, False, inner_depth, token.depth, inner_point,
                PassPoint.OTHER))

            if token.modifier == '^':
                self.emit_interaction(
                    Arbitrary.bottomside_reflection(token.depth))
            else:
                self.emit_interaction(Arbitrary.transmission(token.depth))

        elif following.char in (None, 'P', 'S'):
            self.emit(GeneralPart(
                pp, False, inner_depth, 0.0, inner_point,
                PassPoint.EARTH_SURFACE))

            if following.char is not None:
                self.emit_interaction(Located.SURFACE_REFLECTION)

        else:
            self.fail(token)

    def downgoing_mantle(self, token, following):
        pp = self.wave(token.char)
        self.check_transmission_direction(token, True)
        outer_point, outer_depth = self.origin()

        if token.modifier == 'v':
            self.emit(GeneralPart(
                pp, True, token.depth, outer_depth, PassPoint.OTHER,
                outer_point))
            self.emit_interaction(Arbitrary.topside_reflection(token.depth))

        elif token.modifier == '^':
            self.bounce(pp, outer_depth, outer_point, token.depth,
                        PassPoint.OTHER)
            self.emit_interaction(
                Arbitrary.bottomside_reflection(token.depth))

        elif token.depth is not None:
            if token.depth < outer_depth:
                self.fail(token, 'transmission above the start of')

            if following.char in ('p', 's'):
                self.bounce(pp, outer_depth, outer_point, token.depth,
                            PassPoint.OTHER)
            elif following.char in ('P', 'S'):
                self.emit(GeneralPart(
                    pp, True, token.depth, outer_depth, PassPoint.OTHER,
                    outer_point))
            else:
                self.fail(token)

            self.emit_interaction(Arbitrary.transmission(token.depth))

        elif following.char in (None, 'P', 'S'):
            self.bounce(pp, outer_depth, outer_point, 0.0,
                        PassPoint.EARTH_SURFACE)
            if following.char is not None:
                self.emit_interaction(Located.SURFACE_REFLECTION)

        elif following.char in ('c', 'K'):
            self.emit(GeneralPart(
                pp, True, 0.0, outer_depth, PassPoint.CMB, outer_point))
            self.emit_interaction(
                Located.REFLECTION_C if following.char == 'c'
                else Located.CMB_PENETRATION)

        elif following.char == 'diff':
            angle = math.radians(following.depth or 0.0)
            self.emit(GeneralPart(
                pp, True, 0.0, outer_depth, PassPoint.BOUNCE_POINT,
                outer_point))
            self.emit_interaction(LocatedDiffracted.cmb_diffraction(pp, angle))
            self.emit(GeneralPart(
                pp, False, 0.0, 0.0, PassPoint.BOUNCE_POINT,
                PassPoint.EARTH_SURFACE))

        else:
            self.fail(token)

    def upgoing_after_core(self, token, following):
        pp = self.wave(token.char)
        inner_point, inner_depth = self.origin()
        if token.modifier == 'v':
            self.fail(token)

        elif token.modifier == '^' or token.depth is not None:
            self.emit(GeneralPart(
                pp, False, inner_depth, token.depth, inner_point,
                PassPoint.OTHER))

            if token.modifier == '^':
                self.emit_interaction(
                    Arbitrary.bottomside_reflection(token.depth))
            else:
                self.emit_interaction(Arbitrary.transmission(token.depth))

        elif following.char in (None, 'P', 'S'):
            self.emit(GeneralPart(
                pp, False, inner_depth, 0.0, inner_point,
                PassPoint.EARTH_SURFACE))

            if following.char is not None:
                self.emit_interaction(Located.SURFACE_REFLECTION)

        else:
            self.fail(token)

    def downgoing_outer_core(self, token, following):
        pp = PhasePart.K
        outer_point, outer_depth = self.origin()
        if token.modifier == 'v':
            self.emit(GeneralPart(
                pp, True, token.depth, outer_depth, PassPoint.OTHER,
                outer_point))
            self.emit_interaction(Arbitrary.topside_reflection(token.depth))

        elif token.modifier == '^':
            self.bounce(pp, outer_depth, outer_point, token.depth,
                        PassPoint.OTHER)
            self.emit_interaction(
                Arbitrary.bottomside_reflection(token.depth))

        elif token.depth is not None:
            self.fail(token, 'transmission in the outer core with')

        elif following.char in ('K', 'P', 'S'):
            self.bounce(pp, outer_depth, outer_point, 0.0, PassPoint.CMB)
            self.emit_interaction(
                Located.REFLECTION_K if following.char == 'K'
                else Located.CMB_PENETRATION)

        elif following.char in ('i', 'I', 'J'):
            self.emit(GeneralPart(
                pp, True, 0.0, outer_depth, PassPoint.ICB, outer_point))
            self.emit_interaction(
                Located.OUTERCORE_SIDE_REFLECTION if following.char == 'i'
                else Located.ICB_PENETRATION)

        else:
            self.fail(token)

    def upgoing_outer_core(self, token, following):
        pp = PhasePart.K
        inner_point, inner_depth = self.origin()
        if token.modifier == 'v':
            self.fail(token)

        elif token.modifier == '^':
            self.emit(GeneralPart(
                pp, False, inner_depth, token.depth, inner_point,
                PassPoint.OTHER))
            self.emit_interaction(
                Arbitrary.bottomside_reflection(token.depth))

        elif token.depth is not None:
            self.fail(token, 'transmission in the outer core with')

        elif following.char in ('K', 'P', 'S'):
            self.emit(GeneralPart(
                pp, False, inner_depth, 0.0, inner_point, PassPoint.CMB))
            self.emit_interaction(
                Located.REFLECTION_K if following.char == 'K'
                else Located.CMB_PENETRATION)

        else:
            self.fail(token)

    def downgoing_inner_core(self, token, following):
        pp = self.wave(token.char)
        outer_point, outer_depth = self.origin()
        if token.modifier == 'v':
            self.emit(GeneralPart(
                pp, True, token.depth, outer_depth, PassPoint.OTHER,
                outer_point))
            self.emit_interaction(Arbitrary.topside_reflection(token.depth))

        elif token.modifier == '^':
            self.bounce(pp, outer_depth, outer_point, token.depth,
                        PassPoint.OTHER)
            self.emit_interaction(
                Arbitrary.bottomside_reflection(token.depth))

        elif token.depth is not None:
            self.fail(token, 'transmission in the inner core with')

        elif following.char in ('K', 'I', 'J'):
            self.bounce(pp, outer_depth, outer_point, 0.0, PassPoint.ICB)
            self.emit_interaction(
                Located.ICB_PENETRATION if following.char == 'K'
                else Located.INNERCORE_SIDE_REFLECTION)

        else:
            self.fail(token)

    def upgoing_inner_core(self, token, following):
        pp = self.wave(token.char)
        inner_point, inner_depth = self.origin()
        if token.modifier == 'v':
            self.fail(token)

        elif token.modifier == '^':
            self.emit(GeneralPart(
                pp, False, inner_depth, token.depth, inner_point,
                PassPoint.OTHER))
            self.emit_interaction(
                Arbitrary.bottomside_reflection(token.depth))

        elif token.depth is not None:
            self.fail(token, 'transmission in the inner core with')

        elif following.char in ('K', 'I', 'J'):
            self.emit(GeneralPart(
                pp, False, inner_depth, 0.0, inner_point, PassPoint.ICB))
            self.emit_interaction(
                Located.ICB_PENETRATION if following.char == 'K'
                else Located.INNERCORE_SIDE_REFLECTION)

        else:
            self.fail(token)

    def marker(self, token, following):
        pass

    transitions = {
        (Symbol.UPGOING_MANTLE, State.EMISSION): upgoing_mantle,
        (Symbol.UPGOING_MANTLE, State.TRANSMISSION): upgoing_mantle,
        (Symbol.UPGOING_MANTLE, State.TOPSIDE_REFLECTION): upgoing_mantle,
        (Symbol.MANTLE, State.EMISSION): downgoing_mantle,
        (Symbol.MANTLE, State.TRANSMISSION): downgoing_mantle,
        (Symbol.MANTLE, State.BOTTOMSIDE_REFLECTION): downgoing_mantle,
        (Symbol.MANTLE, State.TOPSIDE_REFLECTION): upgoing_after_core,
        (Symbol.MANTLE, State.CMB_PENETRATION): upgoing_after_core,
        (Symbol.OUTER_CORE, State.CMB_PENETRATION): downgoing_outer_core,
        (Symbol.OUTER_CORE, State.BOTTOMSIDE_REFLECTION):
            downgoing_outer_core,
        (Symbol.OUTER_CORE, State.ICB_PENETRATION): upgoing_outer_core,
        (Symbol.OUTER_CORE, State.TOPSIDE_REFLECTION): upgoing_outer_core,
        (Symbol.INNER_CORE, State.ICB_PENETRATION): downgoing_inner_core,
        (Symbol.INNER_CORE, State.BOTTOMSIDE_REFLECTION):
            downgoing_inner_core,
        (Symbol.INNER_CORE, State.TOPSIDE_REFLECTION): upgoing_inner_core,
        (Symbol.MARKER, State.TOPSIDE_REFLECTION): marker,
        (Symbol.MARKER, State.BOTTOMSIDE_REFLECTION): marker,
        (Symbol.MARKER, State.CMB_PENETRATION): marker,
        (Symbol.MARKER, State.ICB_PENETRATION): marker,
    }

    def build(self):
        tokens = tokenize(self.expanded)
        i = 0
        while i < len(tokens):
            token = tokens[i]
            following = tokens[i+1] if i+1 < len(tokens) else END
            try:
                transition = self.transitions[token.symbol, self.state]
            except KeyError:
                self.fail(token)

            transition(self, token, following)
            i += 1
            if self.state is State.DIFFRACTION:
                # the diffraction token has been consumed with its leg
                i += 1
                if i < len(tokens):
                    self.fail(tokens[i], 'part after diffraction')

        check_consistency(self.parts)
        return tuple(self.parts)


def check_consistency(parts):
    '''
    Check that neighbouring legs and interactions fit together.
    '''

    if not parts or parts[0] != Located.EMISSION:
        raise InternalConsistencyError('path does not start with emission')

    for ipart, part in enumerate(parts):
        check_path_part(part)
        if isinstance(part, LocatedDiffracted):
            if any(not isinstance(x, GeneralPart) for x in parts[ipart+1:]):
                raise InternalConsistencyError(
                    'diffraction is not the last interaction')

        if not isinstance(part, GeneralPart):
            continue

        before = parts[ipart-1]
        after = parts[ipart+1] if ipart+1 < len(parts) else None

        if part.downward:
            start, end = part.outer_point, part.inner_point
        else:
            start, end = part.inner_point, part.outer_point

        if start is not PassPoint.BOUNCE_POINT \
                and before.pass_point is not start:
            raise InternalConsistencyError(
                'leg %s does not start at %s' % (part, before))

        if after is None:
            if end is not PassPoint.EARTH_SURFACE:
                raise InternalConsistencyError(
                    'path does not end at the surface')

        elif end is not PassPoint.BOUNCE_POINT \
                and after.pass_point is not end:
            raise InternalConsistencyError(
                'leg %s does not end at %s' % (part, after))


class Phase(object):
    '''
    Seismic phase.

    Use :py:meth:`Phase.create` to get instances. Phases compare equal if
    their expanded names and polarities are equal.

    :param name: phase name as given, e.g. ``S(2K)S``
    :param expanded_name: name with repetitions expanded, e.g. ``SKKS``
    :param psv: ``True`` for P-SV, ``False`` for SH
    '''

    def __init__(self, name, expanded_name, psv):
        self.name = name
        self.expanded_name = expanded_name
        self.display_name = re_diff_angle.sub('diff', name)
        self.psv = psv
        self.parts = PartBuilder(expanded_name, psv).build()

    @classmethod
    def create(cls, name, psv=None):
        '''
        Parse a phase name.

        :param name: phase name
        :param psv: ``True`` to treat S legs as SV. Ignored (always ``True``)
            when the phase contains ``P`` or ``K``.
        :raises: :py:exc:`~anisoray.error.InvalidPhaseName`
        '''
        psv = 'P' in name or 'K' in name or bool(psv)
        return _create(name, psv)

    @property
    def is_diffracted(self):
        return 'diff' in self.expanded_name

    @property
    def diffraction(self):
        for part in self.parts:
            if isinstance(part, LocatedDiffracted):
                return part

        return None

    @property
    def diffraction_angle(self):
        '''
        Diffraction angle [rad], zero for non-diffracted phases.
        '''
        diffraction = self.diffraction
        return diffraction.angle if diffraction is not None else 0.0

    def grazing(self):
        '''
        The same phase with zero diffraction angle.
        '''
        if not self.is_diffracted:
            return self

        return Phase.create(re_diff_angle.sub('diff', self.name), self.psv)

    def legs(self):
        return [part for part in self.parts if isinstance(part, GeneralPart)]

    def phase_parts(self):
        '''
        Set of wave types used by this phase.
        '''
        return set(leg.phase_part for leg in self.legs())

    def describe(self):
        lines = ['%s (%s)' % (self.name, 'P-SV' if self.psv else 'SH')]
        for part in self.parts:
            lines.append('  %s' % part)

        return '\n'.join(lines)

    def __eq__(self, other):
        return isinstance(other, Phase) \
            and self.expanded_name == other.expanded_name \
            and self.psv == other.psv

    def __ne__(self, other):
        return not self.__eq__(other)

    def __hash__(self):
        return hash((self.expanded_name, self.psv))

    def __str__(self):
        return self.display_name

    def __repr__(self):
        return 'Phase(%r, psv=%r)' % (self.name, self.psv)

    def __reduce__(self):
        return (parse, (self.name, self.psv))


@functools.lru_cache(maxsize=None)
def _create(name, psv):
    expanded = expand_parentheses(name)
    reason = check_validity(expanded)
    if reason is not None:
        raise InvalidPhaseName(name, reason)

    phase = Phase(name, expanded, psv)
    logger.debug('Parsed phase %s: %i path parts', name, len(phase.parts))
    return phase


def parse(name, psv=None):
    return Phase.create(name, psv)


Phase.p = Phase.create('p')
Phase.P = Phase.create('P')
Phase.PcP = Phase.create('PcP')
Phase.PKP = Phase.create('PKP')
Phase.PKiKP = Phase.create('PKiKP')
Phase.PKIKP = Phase.create('PKIKP')
Phase.Pdiff = Phase.create('Pdiff')
Phase.s = Phase.create('s')
Phase.S = Phase.create('S')
Phase.SV = Phase.create('S', True)
Phase.ScS = Phase.create('ScS')
Phase.SVcS = Phase.create('ScS', True)
Phase.SKS = Phase.create('SKS')
Phase.SKiKS = Phase.create('SKiKS')
Phase.SKIKS = Phase.create('SKIKS')
Phase.SKJKS = Phase.create('SKJKS')
Phase.Sdiff = Phase.create('Sdiff')
Phase.SVdiff = Phase.create('Sdiff', True)


def predefined_phases():
    return dict(
        (k, v) for (k, v) in vars(Phase).items() if isinstance(v, Phase))


__all__ = [
    'Partition',
    'PhasePart',
    'PassPoint',
    'Interaction',
    'Located',
    'GeneralPart',
    'Arbitrary',
    'LocatedDiffracted',
    'Phase',
    'parse',
    'is_valid',
    'expand_parentheses',
    'predefined_phases']
