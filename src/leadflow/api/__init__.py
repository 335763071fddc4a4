"""HTTP API for the realtor queue and lead distribution."""
