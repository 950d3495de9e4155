"""Engine-wide defaults."""

DEFAULT_MAX_SETS = 5

# A set score of MAX_POINTS marks a set that was walked over.
MAX_POINTS = 111

MIN_PLAYERS = 2

POINTS_PER_WIN = 2
POINTS_PER_LOSS = 0

DEFAULT_ELO = 1000

GROUP_LABELS = 'ABCDEFGHIJKLMNOPQRSTUVWXYZ'

# Match id prefix for consolation ("silver") playoff brackets
CONSOLATION_PREFIX = 'S'
