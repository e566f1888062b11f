"""Bus names, interface names and service class UUIDs."""

BLUEZ_SERVICE = "org.bluez"
OBEX_SERVICE = "org.bluez.obex"
NETWORK_MANAGER_SERVICE = "org.freedesktop.NetworkManager"

PROPERTIES_IFACE = "org.freedesktop.DBus.Properties"
OBJECT_MANAGER_IFACE = "org.freedesktop.DBus.ObjectManager"

PROPERTIES_CHANGED = f"{PROPERTIES_IFACE}.PropertiesChanged"
INTERFACES_ADDED = f"{OBJECT_MANAGER_IFACE}.InterfacesAdded"
INTERFACES_REMOVED = f"{OBJECT_MANAGER_IFACE}.InterfacesRemoved"

ADAPTER_IFACE = "org.bluez.Adapter1"
DEVICE_IFACE = "org.bluez.Device1"
BATTERY_IFACE = "org.bluez.Battery1"
MEDIA_PLAYER_IFACE = "org.bluez.MediaPlayer1"
MEDIA_CONTROL_IFACE = "org.bluez.MediaControl1"
AGENT_IFACE = "org.bluez.Agent1"
AGENT_MANAGER_IFACE = "org.bluez.AgentManager1"

OBEX_CLIENT_IFACE = "org.bluez.obex.Client1"
OBEX_SESSION_IFACE = "org.bluez.obex.Session1"
OBEX_TRANSFER_IFACE = "org.bluez.obex.Transfer1"
OBEX_OBJECT_PUSH_IFACE = "org.bluez.obex.ObjectPush1"
OBEX_AGENT_IFACE = "org.bluez.obex.Agent1"
OBEX_AGENT_MANAGER_IFACE = "org.bluez.obex.AgentManager1"

BLUEZ_ROOT_PATH = "/org/bluez"
OBEX_ROOT_PATH = "/org/bluez/obex"
AGENT_PATH = "/org/bluez/agent/bluetui"
OBEX_AGENT_PATH = "/org/bluez/obex/agent/bluetui"

OBEX_PUSH_UUID = "00001105-0000-1000-8000-00805f9b34fb"
DUN_UUID = "00001103-0000-1000-8000-00805f9b34fb"
PANU_UUID = "00001115-0000-1000-8000-00805f9b34fb"
NAP_UUID = "00001116-0000-1000-8000-00805f9b34fb"
AUDIO_SOURCE_UUID = "0000110a-0000-1000-8000-00805f9b34fb"
AUDIO_SINK_UUID = "0000110b-0000-1000-8000-00805f9b34fb"
AV_REMOTE_TARGET_UUID = "0000110c-0000-1000-8000-00805f9b34fb"
AV_REMOTE_UUID = "0000110e-0000-1000-8000-00805f9b34fb"
