"""Protect a Starlette app with LDAP bind authentication.

Usage (from the project root):
    python examples/basic.py

Then test with curl against the public forumsys test directory:
    curl "http://localhost:3000/?username=tesla&password=password"   # 200
    curl "http://localhost:3000/?username=tesla&password=wrong"      # 401
    curl -u tesla:password http://localhost:3000/                    # 200
"""

import logging

import uvicorn
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.responses import PlainTextResponse
from starlette.routing import Route

from starlette_ldapauth import LDAPAuthConfig, LDAPAuthMiddleware, ldap_user_var

logging.basicConfig(level=logging.INFO)

config = LDAPAuthConfig(
    url="ldap://ldap.forumsys.com:389",
    bind_dn="cn=read-only-admin,dc=example,dc=com",
    bind_credentials="password",
    search_base="dc=example,dc=com",
    search_filter="(&(objectClass=organizationalPerson)(uid={{username}}))",
)


async def hello(request):
    user = ldap_user_var.get()
    return PlainTextResponse(f"Hello, {user.username if user else 'World'}!")


app = Starlette(
    routes=[Route("/", endpoint=hello)],
    middleware=[Middleware(LDAPAuthMiddleware, config=config)],
)

if __name__ == "__main__":
    uvicorn.run(app, host="127.0.0.1", port=3000)
