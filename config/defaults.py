"""Default configuration constants for the pharmacy accessibility analysis."""

# MCLP coverage radius (straight-line, km)
MCLP_RADIUS_KM = 10.0

# Driving distance bands checked against isochrones (km)
DISTANCE_BANDS_KM = (5, 10, 20, 30, 40, 50)

# Solver selection: "auto", "exact" or "greedy"
SOLVER_METHOD = "auto"
EXACT_MAX_PAIRS = 250_000   # Coverage pairs above this use the greedy heuristic
SOLVER_TIME_LIMIT_S = 60

# Distance engine
EARTH_RADIUS_KM = 6371.0088
NEAREST_CHUNK_SIZE = 5_000  # Demand rows per haversine screening chunk

# Routing collaborator (OpenRouteService)
ORS_BASE_URL = "https://api.openrouteservice.org"
ROUTING_PROFILE = "driving-car"
ROUTING_RANGE_TYPE = "distance"
ISOCHRONE_BATCH_SIZE = 3           # Facilities per isochrone request
ROUTING_WORKERS = 2                # Concurrent isochrone requests
ROUTING_MIN_INTERVAL_S = 3.0       # Free tier allows 20 isochrone requests/min
ROUTING_TIMEOUT_S = 60
OFFLINE_CIRCUITY = 1.3             # Road distance / straight-line distance

# Orchestration
REGION_WORKERS = 4
MAX_PARALLEL_SCENARIOS = 1

# Scenario sweep (total pharmacies)
SWEEP_START = 50
SWEEP_STOP = 700
SWEEP_STEP = 50

# Input preparation
REGION_FALLBACK_KM = 20.0   # Nearest-neighbour region lookup cap for boundary squares

# Files
DATA_DIR = "inputs"
RESULTS_DIR = "results"
PHARMACY_FILE_STEM = "pharmacies"
POPULATION_FILE_STEM = "population_grid"
API_KEY_PLACEHOLDER = "your_api_key_here"
