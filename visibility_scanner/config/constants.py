"""
Configuration constants for the visibility scanner.

Defaults and bounds shared by the config schema, the batch planner and the
engine, kept here to avoid import cycles between those modules.
"""

# Per-provider iteration count bounds (each question is asked this many times)
DEFAULT_ITERATIONS = 50
MIN_ITERATIONS = 1
MAX_ITERATIONS = 100

# Hard wall-clock timeout for one provider call
DEFAULT_TIMEOUT_PER_CALL_MS = 30_000
MIN_TIMEOUT_PER_CALL_MS = 5_000
MAX_TIMEOUT_PER_CALL_MS = 120_000

# Batch status is re-read from the store every N iterations
DEFAULT_PAUSE_CHECK_INTERVAL = 10

# Questions fanned out concurrently within one batch
DEFAULT_MAX_CONCURRENT_QUESTIONS = 3
MAX_CONCURRENT_QUESTIONS = 10

# Credits charged per successful provider call
PROVIDER_CREDIT_COSTS = {
    "openai": 2,
    "gemini": 1,
}
DEFAULT_CREDIT_COST = 1

# Circuit breaker defaults
DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RESET_TIMEOUT_S = 60.0

# Duration estimate inputs
DEFAULT_AVG_RESPONSE_MS = 3_000
DEFAULT_ESTIMATE_PARALLELISM = 5
INTER_BATCH_DELAY_MS = 1_000

# Maximum question length to prevent excessive API costs
MAX_QUESTION_LENGTH = 10_000
