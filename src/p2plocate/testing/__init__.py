from .asserts import assert_equal_soon, assert_true_soon, wait_until
