import base64
import time
import unittest
from unittest.mock import MagicMock, patch

import requests
from jose import jwt

from quadratic_api.auth import InvalidTokenError, TokenValidator

SECRET = "test-secret"
AUDIENCE = "https://api.quadratic.test"
ISSUER = "https://quadratic.auth0.test/"


def _encode(claims: dict, key: str = SECRET) -> str:
    return jwt.encode(claims, key, algorithm="HS256")


def _valid_claims(**overrides) -> dict:
    claims = {"sub": "auth0|alice", "aud": AUDIENCE, "exp": int(time.time()) + 60}
    claims.update(overrides)
    return claims


class SharedSecretValidationTests(unittest.TestCase):
    def setUp(self):
        self.validator = TokenValidator(secret=SECRET, audience=AUDIENCE)

    def test_valid_token_returns_subject(self):
        claims = self.validator.validate_token(_encode(_valid_claims()))
        self.assertEqual(claims.sub, "auth0|alice")

    def test_expired_token(self):
        token = _encode(_valid_claims(exp=int(time.time()) - 10))
        with self.assertRaisesRegex(InvalidTokenError, "expired"):
            self.validator.validate_token(token)

    def test_wrong_audience(self):
        with self.assertRaises(InvalidTokenError):
            self.validator.validate_token(_encode(_valid_claims(aud="someone-else")))

    def test_missing_subject(self):
        claims = _valid_claims()
        del claims["sub"]
        with self.assertRaisesRegex(InvalidTokenError, "sub"):
            self.validator.validate_token(_encode(claims))

    def test_malformed_token(self):
        with self.assertRaisesRegex(InvalidTokenError, "format"):
            self.validator.validate_token("not-a-jwt")

    def test_unconfigured_validator_rejects_everything(self):
        with self.assertRaises(InvalidTokenError):
            TokenValidator().validate_token(_encode(_valid_claims()))


class JwksValidationTests(unittest.TestCase):
    """
    Uses a symmetric JWK so tokens can be minted without a key pair.
    """

    def setUp(self):
        key = base64.urlsafe_b64encode(SECRET.encode()).rstrip(b"=").decode()
        self.jwks = {"keys": [{"kty": "oct", "kid": "k1", "alg": "HS256", "k": key}]}
        patcher = patch("quadratic_api.auth.requests.get")
        self.get = patcher.start()
        self.addCleanup(patcher.stop)
        response = MagicMock()
        response.json.return_value = self.jwks
        self.get.return_value = response
        self.validator = TokenValidator(
            issuer=ISSUER, audience=AUDIENCE, algorithms=["HS256"]
        )

    def test_fetches_and_caches_jwks(self):
        token = _encode(_valid_claims(iss=ISSUER))
        self.assertEqual(self.validator.validate_token(token).sub, "auth0|alice")
        self.assertEqual(self.validator.validate_token(token).sub, "auth0|alice")
        self.get.assert_called_once()
        self.assertEqual(
            self.get.call_args.args[0],
            "https://quadratic.auth0.test/.well-known/jwks.json",
        )

    def test_wrong_issuer(self):
        token = _encode(_valid_claims(iss="https://evil.test/"))
        with self.assertRaises(InvalidTokenError):
            self.validator.validate_token(token)

    def test_jwks_fetch_failure(self):
        self.get.side_effect = requests.ConnectionError("down")
        with self.assertRaisesRegex(InvalidTokenError, "JWKS"):
            self.validator.validate_token(_encode(_valid_claims(iss=ISSUER)))


if __name__ == "__main__":
    unittest.main()
