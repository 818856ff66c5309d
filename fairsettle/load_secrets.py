import os
from dotenv import load_dotenv

load_dotenv()

# database
user = os.getenv("DB_USER")
password = os.getenv("DB_PASSWORD")
host = os.getenv("DB_HOST", "localhost")
port = os.getenv("DB_PORT", "5432")
db_name = os.getenv("DB_NAME")
database_url = os.getenv("DATABASE_URL")

# redis
redis_host = os.getenv("REDIS_HOST", "redis")
redis_port = int(os.getenv("REDIS_PORT", "6379"))

# entropy
random_org_api_key = os.getenv("RANDOM_ORG_API_KEY")
random_org_url = os.getenv(
    "RANDOM_ORG_URL", "https://api.random.org/json-rpc/2.0/invoke"
)
random_org_timeout = float(os.getenv("RANDOM_ORG_TIMEOUT", "5.0"))
block_hash_url = os.getenv(
    "BLOCK_HASH_URL", "https://eos.eosflare.io/api/v1/chain/get_info"
)
block_hash_timeout = float(os.getenv("BLOCK_HASH_TIMEOUT", "3.0"))

# settlement
lock_strategy = os.getenv("LOCK_STRATEGY", "auto")  # auto | transaction | mutex
settlement_max_retries = int(os.getenv("SETTLEMENT_MAX_RETRIES", "3"))
battle_visibility_minutes = int(os.getenv("BATTLE_VISIBILITY_MINUTES", "30"))
pool_id = os.getenv("POOL_ID", "rugged")

# games
plinko_house_edge_bias = float(os.getenv("PLINKO_HOUSE_EDGE_BIAS", "0"))
plinko_jackpot_denominator = int(os.getenv("PLINKO_JACKPOT_DENOMINATOR", "32000"))
plinko_jackpot_multiplier = int(os.getenv("PLINKO_JACKPOT_MULTIPLIER", "1000"))
wheel_betting_seconds = int(os.getenv("WHEEL_BETTING_SECONDS", "25"))
wheel_spin_seconds = int(os.getenv("WHEEL_SPIN_SECONDS", "5"))

# operator endpoints (force crash); disabled when unset
admin_token = os.getenv("ADMIN_TOKEN")
