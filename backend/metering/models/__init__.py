from .tenants import Tenant
from .plans import Plan, PlanPrice
from .subscriptions import Subscription
from .payments import Payment
from .usage_events import UsageEvent
from .audio_uploads import AudioUpload
from .usage_snapshots import UsageSnapshot
from .notifications import Notification
