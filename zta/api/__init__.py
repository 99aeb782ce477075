from zta.api.security import (
    AuthContext,
    SiteAccess,
    get_current_user,
    get_site_access,
    load_rule,
)
