"""Transactional data layer of the mock bank: accounts, payment records, idempotency."""
