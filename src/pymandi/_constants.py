"""Internal constants shared across the library."""

USER_AGENT = "pymandi/0.1"

#: Key under which scale settings are stored in a settings store.
SCALE_SETTINGS_KEY = "scaleSettings"

#: Command most scales answer with a single weight line.
REQUEST_WEIGHT_COMMAND = "P"
COMMAND_TERMINATOR = "\r\n"

# ------------------------------------------------------------------
# Unit conversion (everything is stored in kilograms)
# ------------------------------------------------------------------

GRAMS_PER_KG = 1000.0
KG_PER_LB = 0.453592

# ------------------------------------------------------------------
# Billing rounding: fractional part >= 0.8 carries to the next integer.
# ------------------------------------------------------------------

ROUNDING_CARRY = 0.2

# ------------------------------------------------------------------
# Demo generator
# ------------------------------------------------------------------

DEMO_STEP_KG = 0.25
DEMO_MIN_KG = 0.0
DEMO_MAX_KG = 60.0
