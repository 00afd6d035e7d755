"""Login session state for the results app."""

SESSION_KEYS = ('user_id', 'role', 'school_id', 'full_name')


class SessionContext:
    """
    Wraps the Flask session for one request.

    `persist=True` (remember me) marks the session permanent so the cookie
    outlives the browser; otherwise it is dropped when the browser closes.
    """

    def __init__(self, store):
        self.store = store

    @property
    def user_id(self):
        return self.store.get('user_id')

    @property
    def role(self):
        return self.store.get('role')

    @property
    def school_id(self):
        return self.store.get('school_id')

    @property
    def persist(self):
        return bool(getattr(self.store, 'permanent', False))

    @property
    def is_authenticated(self):
        return bool(self.user_id and self.role)

    def has_role(self, *roles):
        return self.is_authenticated and self.role in roles

    def start(self, user, persist=False):
        self.store.clear()
        self.store['user_id'] = user['username']
        self.store['role'] = user['role']
        self.store['school_id'] = user.get('school_id')
        self.store['full_name'] = user.get('full_name') or user['username']
        self.store.permanent = bool(persist)

    def end(self):
        self.store.clear()
        self.store.permanent = False
