"""Constants shared by the bridge: URLs, page event vocabulary, probes."""

WHATSAPP_WEB_URL = 'https://web.whatsapp.com/'
WHATSAPP_REFERER = 'https://whatsapp.com/'

DEFAULT_USER_AGENT = (
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) '
    'Chrome/124.0.0.0 Safari/537.36'
)

# Bundle readiness flag, set by the instrumentation bundle once its event bus is live
DEFAULT_READY_EXPRESSION = 'window.WPP?.isReady'
DEFAULT_BUNDLE_FILE = 'wppconnect-wa.js'
DEFAULT_INTERCEPT_MARKER = 'dist'


class PageEvents:
    """Names emitted by the bundle's internal event emitter."""

    AUTH_CODE_CHANGE = 'conn.auth_code_change'
    AUTHENTICATED = 'conn.authenticated'
    MAIN_INIT = 'conn.main_init'
    MAIN_LOADED = 'conn.main_loaded'
    MAIN_READY = 'conn.main_ready'
    REQUIRE_AUTH = 'conn.require_auth'
    LOGOUT = 'conn.logout'
    NEW_MESSAGE = 'chat.new_message'
    MSG_ACK_CHANGE = 'chat.msg_ack_change'

    ALL = (
        AUTH_CODE_CHANGE,
        AUTHENTICATED,
        MAIN_INIT,
        MAIN_LOADED,
        MAIN_READY,
        REQUIRE_AUTH,
        LOGOUT,
        NEW_MESSAGE,
        MSG_ACK_CHANGE,
    )


# Host function the relay exposes in the page; every subscribed event reports through it
RELAY_BINDING_NAME = 'wabridgeRelayEvent'

# Startup probes raced against each other. Each is a page function returning a truthy value.
AUTHENTICATED_PROBE = (
    "() => Boolean(document.querySelector(\"[data-icon='search'], #pane-side\")) "
    "|| (typeof window.WPP?.conn?.isMainReady === 'function' && window.WPP.conn.isMainReady() === true)"
)
CHALLENGE_PROBE = (
    "() => Boolean(document.querySelector('div[data-ref] canvas, div[data-link-code]')) "
    "|| (typeof window.WPP?.conn?.isAuthenticated === 'function' && window.WPP.conn.isAuthenticated() === false "
    "&& window.WPP?.conn?.isMainLoaded?.() !== true)"
)
# Progress of the main application once authenticated; its load events may predate the relay
MAIN_STATE_PROBE = (
    "() => { const conn = window.WPP?.conn; "
    "if (typeof conn?.isMainReady === 'function' && conn.isMainReady()) return 'ready'; "
    "if (typeof conn?.isMainLoaded === 'function' && conn.isMainLoaded()) return 'loaded'; "
    "return null; }"
)

# Capabilities resolved under window.WPP at startup and used by domain operations
REQUIRED_CAPABILITIES = [
    'conn.getAuthCode',
    'conn.logout',
    'chat.sendTextMessage',
    'chat.markIsRead',
    'chat.getMessageById',
    'contact.get',
]

OPTIONAL_CAPABILITIES = [
    'conn.genLinkDeviceCodeForPhoneNumber',
    'contact.getProfilePictureUrl',
]
