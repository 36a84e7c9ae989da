#!/usr/bin/env python
# http://pyrocko.org - GPLv3
#
# The Pyrocko Developers, 21st Century
# ---|P------/S----------~Lg----------
import sys
import math
import logging
from optparse import OptionParser, OptionGroup

import numpy as num

from pyrocko import util

from anisoray import config, catalog, structure as smod
from anisoray.phase import Phase
from anisoray.error import AnisorayError, InvalidPhaseName

logger = logging.getLogger('anisoray.apps.anisoray')

program_name = 'anisoray'


class Anon(dict):

    def __getattr__(self, x):
        return self[x]

    def getn(self, *keys):
        return Anon([(k, self[k]) for k in keys])


def optparse(
        required=(),
        optional=(),
        args=sys.argv,
        usage='%prog [options]',
        descr=None):

    want = required + optional

    parser = OptionParser(
        prog=program_name,
        usage=usage,
        description=descr.capitalize()+'.',
        add_help_option=False,
        formatter=util.BetterHelpFormatter())

    parser.add_option(
        '-h', '--help', action='help', help='Show help message and exit.')

    parser.add_option(
        '--loglevel', dest='loglevel', default='info',
        choices=('critical', 'error', 'warning', 'info', 'debug'),
        metavar='LEVEL',
        help='Set logger level. Choices: critical, error, warning, info, '
             'debug. Default: info.')

    if 'phases' in want:
        group = OptionGroup(parser, 'Phases', '''

Phase names follow the ANISOtime conventions: P, S (mantle), K (outer core),
I, J (inner core), lower case p and s for upgoing legs from the source, c
and i for reflections at the CMB and ICB, ^DEPTH and vDEPTH for underside and
topside reflections at a depth [km], and "diff" for diffraction along the
CMB. Parenthesized groups may be repeated with a count, e.g. "P(2)".

''')
        group.add_option(
            '--phase', '--phases', dest='phases', action='append',
            default=[], metavar='PHASE1,PHASE2,...',
            help='Comma separated list of seismic phases (default: P,S).')

        group.add_option(
            '--sh', dest='sh', action='store_true', default=False,
            help='Treat S legs of pure S phases as SH instead of SV.')

        parser.add_option_group(group)

    if 'structure' in want:
        group = OptionGroup(parser, 'Structure')
        group.add_option(
            '--model', dest='model', metavar='(NAME or FILENAME)',
            default='prem',
            help='Use builtin structure named NAME or user model from file '
                 'FILENAME. Files ending in .yaml are read as polynomial '
                 'models, others as tabulated models. By default, the '
                 '"prem" structure is used. Run "anisoray list-models" for '
                 'a list of builtin structures.')
        parser.add_option_group(group)

    if any(x in want for x in ('distances', 'sdepth', 'relative')):
        group = OptionGroup(parser, 'Source-receiver geometry')
        if 'sdepth' in want:
            group.add_option(
                '--sdepth', dest='sdepth', type='float', default=0.0,
                metavar='FLOAT',
                help='Source depth [km] (default: 0)')

        if 'distances' in want:
            group.add_option(
                '--distances', dest='sdist', metavar='DISTANCES',
                help='Epicentral distances as "start:stop:n" or '
                     '"dist1,dist2,..." [deg]')

        if 'relative' in want:
            group.add_option(
                '--relative', dest='relative', action='store_true',
                default=False,
                help='Compare distances modulo a full circle, mapped to '
                     '[0, 180] deg.')

        parser.add_option_group(group)

    if any(x in want for x in ('delta_delta', 'cache_dir', 'nthreads')):
        group = OptionGroup(parser, 'Catalog')
        if 'delta_delta' in want:
            group.add_option(
                '--delta-delta', dest='delta_delta', type='float',
                metavar='FLOAT',
                help='Maximum distance [deg] between neighbouring raypaths '
                     '(default: from configuration)')

        if 'cache_dir' in want:
            group.add_option(
                '--cache-dir', dest='cache_dir', metavar='DIR',
                help='Directory of stored catalogs (default: from '
                     'configuration)')

        if 'nthreads' in want:
            group.add_option(
                '--nthreads', dest='nthreads', type='int', metavar='INT',
                help='Number of threads used to compute raypaths')

        parser.add_option_group(group)

    (options, args) = parser.parse_args(args)

    if len(args) != 2:
        parser.error(
            'Arguments should look like "--option" or "--option=...".')

    util.setup_logging(program_name, options.loglevel)

    d = {}
    if 'phases' in want:
        psv = not options.sh
        phases = []
        try:
            for ss in options.phases:
                for s in ss.split(','):
                    phases.append(Phase.create(s.strip(), psv))

        except InvalidPhaseName as e:
            parser.error(str(e))

        if not phases:
            phases = [Phase.create('P', psv), Phase.create('S', psv)]

        d['phases'] = phases

    if 'structure' in want:
        try:
            d['structure'] = smod.get_structure(options.model)
        except (AnisorayError, OSError) as e:
            parser.error('cannot load structure %s: %s' % (options.model, e))

    if 'distances' in want:
        distances = None
        if options.sdist:
            try:
                if options.sdist.find(':') != -1:
                    ssn = options.sdist.split(':')
                    if len(ssn) != 3:
                        raise ValueError()

                    distances = num.linspace(
                        float(ssn[0]), float(ssn[1]), int(ssn[2]))
                else:
                    distances = num.array(
                        [float(x) for x in options.sdist.split(',')],
                        dtype=float)

            except ValueError:
                parser.error(
                    'format for distances is "min:max:n" or '
                    '"dist1,dist2,..."')

        d['distances'] = distances

    for k in ('sdepth', 'relative', 'delta_delta', 'cache_dir', 'nthreads'):
        if k in want:
            d[k] = getattr(options, k)

    for k in required:
        if d.get(k) is None:
            parser.error('missing %s' % k)

    return Anon(d)


def d2u(d):
    return dict((k.replace('-', '_'), v) for (k, v) in d.items())


def get_catalog(c):
    delta_delta = math.radians(c.delta_delta) \
        if c.delta_delta is not None else None

    return catalog.RaypathCatalog.get(
        c.structure,
        delta_delta=delta_delta,
        cache_dir=c.cache_dir,
        nthreads=c.nthreads)


def print_arrivals(cat, phases, distances, sdepth=0.0, relative=False):
    event_r = cat.structure.earth_radius - sdepth

    headers = 'dist time slow phase'.split()
    units = 'deg s s/deg'.split()
    space = (8, 10, 8)

    print(' '.join(x.ljust(s) for (x, s) in zip(headers, space + (16,))))
    print(' '.join(x.ljust(s) for (x, s) in zip(units, space)))
    print('-' * 45)

    for distance in distances:
        for phase in phases:
            for arrival in cat.arrivals(
                    phase, event_r, math.radians(distance), relative):

                print('%8.3f %10.3f %8.4f %s' % (
                    distance, arrival.t, math.radians(arrival.p),
                    arrival.phase))


def print_structure(structure):
    print(structure)
    print()
    print('%10s %8s %8s %8s %8s %8s' % (
        'r [km]', 'rho', 'vpv', 'vph', 'vsv', 'vsh'))

    boundaries = structure.velocity_boundaries()[::-1]
    for rtop, rbot in zip(boundaries[:-1], boundaries[1:]):
        for r in (rtop - 1e-3, rbot + 1e-3):
            print('%10.3f %8.4f %8.4f %8.4f %8.4f %8.4f' % (
                r,
                structure.rho(r),
                structure.vpv(r),
                structure.vph(r),
                structure.vsv(r),
                structure.vsh(r)))

        if rbot in (structure.cmb, structure.icb):
            print('%10.3f %s' % (
                rbot, {structure.cmb: 'cmb', structure.icb: 'icb'}[rbot]))

    print()


def main(args=None):

    if args is None:
        args = sys.argv[1:]

    subcommand_descriptions = {
        'arrivals':    'print list of phase arrivals',
        'print':       'get information on structure and phases',
        'catalog':     'build or load the raypath catalog of a structure',
        'list-models': 'list builtin structures',
        'config':      'print the active configuration'}

    usage = '''anisoray <subcommand> [options]

Subcommands:

    arrivals       %(arrivals)s
    print          %(print)s
    catalog        %(catalog)s
    list-models    %(list_models)s
    config         %(config)s

To get further help and a list of available options for any subcommand run:

    anisoray <subcommand> --help

'''.strip() % d2u(subcommand_descriptions)

    usage_sub = 'anisoray %s [options]'
    if len(args) < 1:
        sys.exit('Usage: %s' % usage)

    command = args[0]

    args[0:0] = [program_name]
    descr = subcommand_descriptions.get(command, None)
    subusage = usage_sub % command

    try:
        if command == 'arrivals':
            c = optparse(
                ('structure', 'phases', 'distances'),
                ('sdepth', 'relative', 'delta_delta', 'cache_dir',
                 'nthreads'),
                usage=subusage, descr=descr, args=args)

            print_arrivals(
                get_catalog(c),
                **c.getn('phases', 'distances', 'sdepth', 'relative'))

        elif command == 'print':
            c = optparse(
                ('structure',), ('phases',),
                usage=subusage, descr=descr, args=args)

            print_structure(c.structure)
            for phase in c.phases:
                print(phase.describe())
                print()

        elif command == 'catalog':
            c = optparse(
                ('structure',), ('delta_delta', 'cache_dir', 'nthreads'),
                usage=subusage, descr=descr, args=args)

            cat = get_catalog(c)
            print(cat)
            print('pdiff:  %12.4f s/rad' % cat.pdiff.p)
            print('svdiff: %12.4f s/rad' % cat.svdiff.p)
            print('shdiff: %12.4f s/rad' % cat.shdiff.p)
            print('klimit: %12.4f s/rad' % cat.klimit.p)

        elif command == 'list-models':
            optparse((), (), usage=subusage, descr=descr, args=args)
            for name in sorted(smod.builtin_structures):
                print(name)

        elif command == 'config':
            optparse((), (), usage=subusage, descr=descr, args=args)
            print(config.config())

        elif command in ('--help', '-h', 'help'):
            sys.exit('Usage: %s' % usage)

        else:
            sys.exit('anisoray: no such subcommand: %s' % command)

    except AnisorayError as e:
        logger.error(str(e))
        sys.exit('anisoray: %s' % str(e))


if __name__ == '__main__':
    main(sys.argv[1:])
