# 订单
from .order import Order
# 邀请码
from .invite_code import InviteCode
# 用户会员
from .user_membership import UserMembership
# 影视订阅
from .user_subscription import UserSubscription
# 配置单例（支付/会员/邮件/购买限制）
from .app_setting import AppSetting
# 互斥令牌
from .mutex_token import MutexToken
from .base import *
