from .authorizer import Authorizer, HeaderAuthorizer, NoAuthAuthorizer, bearer_token

__all__ = ["Authorizer", "HeaderAuthorizer", "NoAuthAuthorizer", "bearer_token"]
