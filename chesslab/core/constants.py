MATE_SCORE_CP = 10000

SCORE_CP = "cp"
SCORE_MATE = "mate"

WHITE = "white"
BLACK = "black"

LABEL_FORCED = "Forced"
LABEL_BEST = "Best"
LABEL_GOOD = "Good"
LABEL_INACCURACY = "Inaccuracy"
LABEL_MISTAKE = "Mistake"
LABEL_BLUNDER = "Blunder"
LABEL_MISS = "Miss"

BEST_LOSS_THRESHOLD = 20
GOOD_LOSS_THRESHOLD = 50
INACCURACY_LOSS_THRESHOLD = 99
MISTAKE_LOSS_THRESHOLD = 300

PUZZLE_MIN_LOSS_CP = 200
PUZZLE_MAX_STARTING_DEFICIT_CP = 50

RATING_MODES = ("blitz", "rapid", "bullet")

BUCKET_STRONGER = "stronger"
BUCKET_WEAKER = "weaker"

PUZZLE_NAMESPACE_PREFIX = "puzzles"
PUZZLE_STORE_KEY = "puzzle_set"
