"""
Tests for bearer token issuance and validation.
"""
import jwt

from shortlink_app.security import TokenAuthority


class TestTokenAuthority:
    def test_round_trip(self):
        authority = TokenAuthority(secret_key="s3cret")
        assert authority.verify_token(authority.issue_token("user-1")) == "user-1"

    def test_wrong_secret(self):
        token = TokenAuthority(secret_key="one").issue_token("user-1")
        assert TokenAuthority(secret_key="two").verify_token(token) is None

    def test_expired_token(self):
        authority = TokenAuthority(secret_key="s3cret", expire_minutes=-1)
        assert authority.verify_token(authority.issue_token("user-1")) is None

    def test_non_access_token(self):
        token = jwt.encode({"sub": "user-1", "exp": 9999999999, "type": "refresh"}, "s3cret", algorithm="HS256")
        assert TokenAuthority(secret_key="s3cret").verify_token(token) is None

    def test_garbage(self):
        assert TokenAuthority(secret_key="s3cret").verify_token("garbage") is None
