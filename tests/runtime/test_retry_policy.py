import unittest

from deploykit.runtime.execution import (
    DEFAULT_RETRY_POLICY,
    ErrorKind,
    RetryPolicy,
    RetryPolicyError,
    build_retry_schedule,
    compute_backoff_delay,
    is_transient,
    retry_policy_from_mapping,
    validate_retry_policy,
)


class RetryPolicyTests(unittest.TestCase):
    def test_validate_retry_policy_accepts_default(self):
        self.assertEqual(validate_retry_policy(DEFAULT_RETRY_POLICY), DEFAULT_RETRY_POLICY)

    def test_validate_retry_policy_rejects_zero_attempts(self):
        with self.assertRaises(RetryPolicyError):
            validate_retry_policy(RetryPolicy(max_attempts=0))

    def test_validate_retry_policy_rejects_negative_delay(self):
        with self.assertRaises(RetryPolicyError):
            validate_retry_policy(RetryPolicy(initial_delay_seconds=-1))

    def test_validate_retry_policy_rejects_backoff_lt_one(self):
        with self.assertRaises(RetryPolicyError):
            validate_retry_policy(RetryPolicy(backoff_multiplier=0.5))

    def test_validate_retry_policy_rejects_negative_jitter(self):
        with self.assertRaises(RetryPolicyError):
            validate_retry_policy(RetryPolicy(jitter_seconds=-0.1))

    def test_retry_policy_from_mapping_defaults(self):
        self.assertEqual(retry_policy_from_mapping(None), DEFAULT_RETRY_POLICY)

    def test_retry_policy_from_mapping_applies_values_over_base(self):
        base = RetryPolicy(max_attempts=7, max_delay_seconds=4)
        policy = retry_policy_from_mapping({"initial_delay_seconds": 0.25}, base=base)
        self.assertEqual(policy.max_attempts, 7)
        self.assertEqual(policy.max_delay_seconds, 4)
        self.assertEqual(policy.initial_delay_seconds, 0.25)

    def test_retry_policy_from_mapping_rejects_non_mapping(self):
        with self.assertRaises(RetryPolicyError):
            retry_policy_from_mapping("bad")

    def test_retry_policy_from_mapping_rejects_unknown_fields(self):
        with self.assertRaises(RetryPolicyError) as ctx:
            retry_policy_from_mapping({"attempts": 3})
        self.assertIn("attempts", str(ctx.exception))

    def test_retry_policy_from_mapping_rejects_non_numeric(self):
        with self.assertRaises(RetryPolicyError):
            retry_policy_from_mapping({"max_attempts": "many"})

    def test_attempt_timeout_is_optional_and_positive(self):
        self.assertIsNone(DEFAULT_RETRY_POLICY.attempt_timeout_seconds)
        self.assertEqual(retry_policy_from_mapping({"attempt_timeout_seconds": 30}).attempt_timeout_seconds, 30.0)
        with self.assertRaises(RetryPolicyError):
            validate_retry_policy(RetryPolicy(attempt_timeout_seconds=0))

    def test_retry_policy_from_mapping_null_timeout_clears_base(self):
        base = RetryPolicy(attempt_timeout_seconds=5)
        self.assertIsNone(retry_policy_from_mapping({"attempt_timeout_seconds": None}, base=base).attempt_timeout_seconds)
        self.assertEqual(retry_policy_from_mapping({}, base=base).attempt_timeout_seconds, 5)

    def test_compute_backoff_delay_doubles_from_initial(self):
        policy = RetryPolicy(max_attempts=4, initial_delay_seconds=1, backoff_multiplier=2, max_delay_seconds=10)
        self.assertEqual(compute_backoff_delay(policy, 1), 1)
        self.assertEqual(compute_backoff_delay(policy, 2), 2)
        self.assertEqual(compute_backoff_delay(policy, 3), 4)

    def test_compute_backoff_delay_respects_cap(self):
        policy = RetryPolicy(max_attempts=5, initial_delay_seconds=5, backoff_multiplier=3, max_delay_seconds=7)
        self.assertEqual(compute_backoff_delay(policy, 3), 7)

    def test_compute_backoff_delay_adds_jitter_after_cap(self):
        policy = RetryPolicy(initial_delay_seconds=10, max_delay_seconds=10, jitter_seconds=0.5)
        self.assertAlmostEqual(compute_backoff_delay(policy, 4, rand=1.0), 10.5)
        self.assertAlmostEqual(compute_backoff_delay(policy, 1, rand=0.0), 10.0)

    def test_compute_backoff_delay_clamps_random_seed(self):
        policy = RetryPolicy(initial_delay_seconds=1, jitter_seconds=1)
        self.assertAlmostEqual(compute_backoff_delay(policy, 1, rand=5.0), 2.0)

    def test_compute_backoff_delay_rejects_attempt_zero(self):
        with self.assertRaises(RetryPolicyError):
            compute_backoff_delay(DEFAULT_RETRY_POLICY, 0)

    def test_build_retry_schedule_uses_attempts_minus_one(self):
        policy = RetryPolicy(max_attempts=4, initial_delay_seconds=1, backoff_multiplier=2)
        self.assertEqual(build_retry_schedule(policy), (1, 2, 4))

    def test_build_retry_schedule_single_attempt_is_empty(self):
        self.assertEqual(build_retry_schedule(RetryPolicy(max_attempts=1)), ())


class TransientErrorTests(unittest.TestCase):
    def test_transient_kinds(self):
        for kind in (ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT, ErrorKind.UNKNOWN):
            self.assertTrue(is_transient(kind), kind)

    def test_permanent_kinds(self):
        self.assertFalse(is_transient(ErrorKind.VALIDATION))
        self.assertFalse(is_transient(ErrorKind.EXECUTION))
        self.assertFalse(is_transient(ErrorKind.CIRCUIT_OPEN))

    def test_unclassified_is_transient(self):
        self.assertTrue(is_transient(None))


if __name__ == "__main__":
    unittest.main()
