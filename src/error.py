# http://pyrocko.org - GPLv3
#
# The Pyrocko Developers, 21st Century
# ---|P------/S----------~Lg----------

'''
Anisoray exception definitions.

A ray parameter which does not admit a given phase is not an error: such
queries return ``nan`` or empty results.
'''


class AnisorayError(Exception):
    '''
    Base class for errors raised by anisoray.
    '''
    pass


class InvalidArguments(AnisorayError):
    '''
    Raised when arguments are out of their valid range.
    '''
    pass


class InvalidPhaseName(AnisorayError):
    '''
    Raised when a phase name violates the phase grammar.
    '''

    def __init__(self, name, reason):
        AnisorayError.__init__(self, name, reason)
        self.name = name
        self.reason = reason

    def __str__(self):
        return 'Invalid phase name: "%s" (%s)' % (self.name, self.reason)


class InternalConsistencyError(AnisorayError):
    '''
    Raised when the phase parser reaches a state which validity checks should
    have excluded.
    '''
    pass


class InvalidStructure(AnisorayError):
    '''
    Raised when a velocity structure definition is inconsistent.
    '''
    pass


class BadConfig(AnisorayError):
    pass


class CatalogError(AnisorayError):
    '''
    Raised when a stored catalog cannot be used.
    '''
    pass


__all__ = [
    'AnisorayError',
    'InvalidArguments',
    'InvalidPhaseName',
    'InternalConsistencyError',
    'InvalidStructure',
    'BadConfig',
    'CatalogError']
