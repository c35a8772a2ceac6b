"""
LDAP directory service.

Reads the current groups and users from an LDAP directory and applies
reconciliation actions to it with ldap3. Groups are ``groupOfNames`` style
entries whose ``member`` values are resolved to and from email addresses;
users are ``inetOrgPerson`` style entries keyed by their campus id.
"""

import ssl
import time
import logging
from typing import Dict, List, Any, Optional, Tuple

from ldap3 import Server, Connection, SUBTREE, ALL, Tls, MODIFY_REPLACE
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import escape_rdn, parse_dn

from directory_sync.models import Group, User, normalize_key, unique_folded
from directory_sync.actions import Update
from directory_sync.logging_setup import audit_logger
from directory_sync.services.base import UpdateService, UpdateServiceError

logger = logging.getLogger(__name__)

PAGED_RESULTS_OID = '1.2.840.113556.1.4.319'


def dn_key(dn: str) -> str:
    """Return the comparable form of a DN, ignoring spacing and letter case."""
    try:
        return ''.join(f"{attribute}={value}{separator}"
                       for attribute, value, separator in parse_dn(str(dn))).lower()
    except LDAPException:
        return str(dn).lower()


class LDAPConnectionError(UpdateServiceError):
    """Raised when the LDAP connection cannot be established."""
    pass


class LDAPQueryError(UpdateServiceError):
    """Raised when reading from the directory fails."""
    pass


class LDAPOperationError(UpdateServiceError):
    """Raised when a directory write is rejected."""
    pass


class LDAPDirectoryService(UpdateService):
    """
    Update service backed by an LDAP directory.

    Attribute names and search bases come from the ``directory.ldap``
    configuration section.
    """

    name = 'ldap'

    def __init__(self, config: Dict[str, Any], error_config: Optional[Dict[str, Any]] = None):
        """
        Initialize the service with configuration.

        Args:
            config: LDAP configuration dictionary
            error_config: The ``error_handling`` section, for connection retries
        """
        self.config = config
        self.server_url = config['server_url']
        self.bind_dn = config['bind_dn']
        self.bind_password = config['bind_password']

        self.group_base_dn = config.get('group_base_dn', '')
        self.group_filter = config.get('group_filter', '(objectClass=groupOfNames)')
        self.group_object_classes = config.get('group_object_classes', ['top', 'groupOfNames', 'extensibleObject'])
        self.user_base_dn = config.get('user_base_dn', '')
        self.user_filter = config.get('user_filter', '(objectClass=inetOrgPerson)')
        self.user_object_classes = config.get('user_object_classes',
                                              ['top', 'person', 'organizationalPerson', 'inetOrgPerson'])
        self.user_id_attribute = config.get('user_id_attribute', 'uid')

        # Synchronized fields mapped to directory attributes
        self.group_attributes = {
            'type': config.get('group_type_attribute', 'businessCategory'),
            'members': 'member',
            'aliases': config.get('group_alias_attribute', 'mailAlternateAddress'),
        }
        self.group_email_attribute = config.get('group_email_attribute', 'mail')
        self.user_attributes = {
            'first_name': 'givenName',
            'second_name': 'sn',
            'nick': 'displayName',
            'mail': 'mail',
            'gdpr_education': config.get('user_gdpr_attribute', 'employeeType'),
        }

        use_ssl = config.get('use_ssl')
        self.use_ssl = self.server_url.lower().startswith('ldaps://') if use_ssl is None else use_ssl
        self.start_tls = config.get('start_tls', False)
        self.verify_ssl = config.get('verify_ssl', True)
        self.ca_cert_file = config.get('ca_cert_file')
        self.cert_file = config.get('cert_file')
        self.key_file = config.get('key_file')

        self.connection_timeout = config.get('connection_timeout', 10)
        self.receive_timeout = config.get('receive_timeout', 10)
        self.page_size = config.get('page_size', 500)

        error_config = error_config or {}
        self.max_retries = error_config.get('max_retries', 3)
        self.retry_wait = error_config.get('retry_wait_seconds', 5)

        self.server = None
        self.connection = None
        self._connected = False

        # email -> DN and DN -> email, filled while reading and writing
        self._dn_by_mail: Dict[str, str] = {}
        self._mail_by_dn: Dict[str, str] = {}

    def connect(self, max_retries: Optional[int] = None, retry_wait: Optional[int] = None) -> bool:
        """
        Establish connection to the LDAP server with retry logic.

        Args:
            max_retries: Maximum number of connection attempts (uses config default if None)
            retry_wait: Seconds to wait between attempts (uses config default if None)

        Returns:
            True if connection successful

        Raises:
            LDAPConnectionError: If connection fails after all retries
        """
        max_retries = max_retries or self.max_retries
        retry_wait = self.retry_wait if retry_wait is None else retry_wait

        try:
            self.server = Server(
                self.server_url,
                use_ssl=self.use_ssl,
                tls=self._create_tls_config(),
                get_info=ALL,
                connect_timeout=self.connection_timeout
            )
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to create LDAP server: {e}")

        last_exception = None
        for attempt in range(max_retries):
            try:
                self.connection = Connection(
                    self.server,
                    user=self.bind_dn,
                    password=self.bind_password,
                    auto_bind=False,
                    receive_timeout=self.receive_timeout
                )

                self.connection.open()
                if self.connection.closed:
                    raise LDAPConnectionError(f"Failed to open connection: {self.connection.result}")

                if self.start_tls and not self.use_ssl:
                    if not self.connection.start_tls():
                        raise LDAPConnectionError(f"Failed to start TLS: {self.connection.result}")
                    logger.debug("StartTLS negotiation successful")

                if not self.connection.bind():
                    raise LDAPConnectionError(f"Bind failed: {self.connection.result}")

                self._connected = True
                logger.info(f"Successfully connected and bound to LDAP server {self.server_url}")
                return True

            except (LDAPException, LDAPConnectionError) as e:
                last_exception = e
                logger.warning(f"LDAP connection attempt {attempt + 1}/{max_retries} failed: {e}")
                self._drop_connection()
                if attempt < max_retries - 1:
                    time.sleep(retry_wait)

        error_msg = f"Failed to connect to LDAP after {max_retries} attempts"
        if last_exception:
            error_msg += f": {last_exception}"
        raise LDAPConnectionError(error_msg)

    def _create_tls_config(self) -> Optional[Tls]:
        """
        Create TLS configuration for the LDAP connection.

        Returns:
            Tls configuration object or None if not needed
        """
        if not (self.use_ssl or self.start_tls):
            return None

        tls_config = {}

        if not self.verify_ssl:
            tls_config['validate'] = ssl.CERT_NONE
            logger.warning("SSL certificate verification disabled")
        else:
            tls_config['validate'] = ssl.CERT_REQUIRED

        if self.ca_cert_file:
            tls_config['ca_certs_file'] = self.ca_cert_file
            logger.debug(f"Using CA certificate file: {self.ca_cert_file}")

        if self.cert_file and self.key_file:
            tls_config['local_certificate_file'] = self.cert_file
            tls_config['local_private_key_file'] = self.key_file
            logger.debug("Client certificate configured for mutual TLS")

        try:
            return Tls(**tls_config)
        except LDAPException as e:
            raise LDAPConnectionError(f"Failed to create TLS configuration: {e}")

    def _drop_connection(self):
        if self.connection:
            try:
                self.connection.unbind()
            except LDAPException as e:
                logger.debug(f"Ignoring error while unbinding: {e}")
            self.connection = None

    def disconnect(self):
        """Close the LDAP connection."""
        if self.connection and self._connected:
            try:
                self.connection.unbind()
                logger.debug("LDAP connection closed")
            except LDAPException as e:
                logger.warning(f"Error closing LDAP connection: {e}")
            finally:
                self._connected = False
                self.connection = None

    def close(self) -> None:
        self.disconnect()

    # Reading

    def _require_connection(self):
        if not self._connected:
            raise LDAPQueryError("Not connected to LDAP server")

    def _paged_search(self, search_base: str, search_filter: str, attributes: List[str]) -> List[Tuple[str, Dict[str, List]]]:
        """
        Run a paged subtree search.

        Returns:
            List of (dn, attributes) pairs
        """
        self._require_connection()
        logger.debug(f"Searching with filter: {search_filter} in base: {search_base}")

        results = []
        cookie = None
        page_count = 0
        try:
            while True:
                success = self.connection.search(
                    search_base=search_base,
                    search_filter=search_filter,
                    search_scope=SUBTREE,
                    attributes=attributes,
                    paged_size=self.page_size,
                    paged_cookie=cookie
                )
                if not success and self.connection.result.get('result') not in (0, None):
                    raise LDAPQueryError(f"Search failed: {self.connection.result}")

                page_count += 1
                for entry in self.connection.entries:
                    results.append((str(entry.entry_dn), entry.entry_attributes_as_dict))

                controls = self.connection.result.get('controls') or {}
                cookie = controls.get(PAGED_RESULTS_OID, {}).get('value', {}).get('cookie')
                if not cookie:
                    break
        except LDAPException as e:
            raise LDAPQueryError(f"Paged search failed: {e}")

        logger.debug(f"Retrieved {len(results)} entries across {page_count} pages")
        return results

    @staticmethod
    def _first(attributes: Dict[str, List], name: str, default: Any = '') -> Any:
        values = attributes.get(name) or []
        return values[0] if values else default

    def _remember(self, dn: str, mail: str):
        if mail:
            self._dn_by_mail[normalize_key(mail)] = dn
            self._mail_by_dn[dn_key(dn)] = mail

    def _forget(self, dn: Optional[str]):
        if dn:
            mail = self._mail_by_dn.pop(dn_key(dn), None)
            if mail:
                self._dn_by_mail.pop(normalize_key(mail), None)

    def get_users(self) -> List[User]:
        """Read all users below the user base DN."""
        attributes = [self.user_id_attribute] + list(self.user_attributes.values())
        users = []
        for dn, attrs in self._paged_search(self.user_base_dn, self.user_filter, attributes):
            cid = self._first(attrs, self.user_id_attribute)
            if not cid:
                logger.warning(f"User entry has no {self.user_id_attribute}: {dn}")
                continue
            user = User(
                cid=str(cid),
                first_name=str(self._first(attrs, self.user_attributes['first_name'])),
                second_name=str(self._first(attrs, self.user_attributes['second_name'])),
                nick=str(self._first(attrs, self.user_attributes['nick'])),
                mail=str(self._first(attrs, self.user_attributes['mail'])),
                gdpr_education=self._parse_boolean(self._first(attrs, self.user_attributes['gdpr_education'], False)),
            )
            self._remember(dn, user.mail)
            users.append(user)

        logger.info(f"Read {len(users)} users from LDAP")
        return users

    def get_groups(self) -> List[Group]:
        """
        Read all groups below the group base DN.

        Member DNs are resolved to email addresses through the users and
        groups of the directory; members that cannot be resolved are skipped
        with a warning.
        """
        if not self._mail_by_dn:
            for dn, attrs in self._paged_search(self.user_base_dn, self.user_filter, ['mail']):
                self._remember(dn, self._first(attrs, 'mail'))

        attributes = [self.group_email_attribute] + list(self.group_attributes.values())
        entries = self._paged_search(self.group_base_dn, self.group_filter, attributes)
        for dn, attrs in entries:
            self._remember(dn, self._first(attrs, self.group_email_attribute))

        groups = []
        for dn, attrs in entries:
            email = self._first(attrs, self.group_email_attribute)
            if not email:
                logger.warning(f"Group entry has no {self.group_email_attribute}: {dn}")
                continue

            members = []
            for member_dn in attrs.get(self.group_attributes['members']) or []:
                mail = self._mail_by_dn.get(dn_key(member_dn))
                if mail:
                    members.append(mail)
                else:
                    logger.warning(f"Group {email}: member {member_dn} has no email address, skipping")

            groups.append(Group(
                email=str(email),
                type=str(self._first(attrs, self.group_attributes['type'])),
                members=members,
                aliases=[str(alias) for alias in attrs.get(self.group_attributes['aliases']) or []],
            ))

        logger.info(f"Read {len(groups)} groups from LDAP")
        return groups

    def _find_dn(self, search_base: str, search_filter: str, attribute: str, value: str) -> str:
        """
        Find the DN of the single entry whose attribute equals value.

        Raises:
            LDAPOperationError: If no entry matches
        """
        self._require_connection()
        query = f"(&{search_filter}({attribute}={escape_filter_chars(value)}))"
        try:
            self.connection.search(
                search_base=search_base,
                search_filter=query,
                search_scope=SUBTREE,
                attributes=[attribute]
            )
        except LDAPException as e:
            raise LDAPQueryError(f"Lookup of {attribute}={value} failed: {e}")
        if not self.connection.entries:
            raise LDAPOperationError(f"No entry with {attribute}={value} below {search_base}")
        return str(self.connection.entries[0].entry_dn)

    def _resolve_member_dn(self, mail: str) -> str:
        dn = self._dn_by_mail.get(normalize_key(mail))
        if dn:
            return dn
        for search_base, search_filter in ((self.user_base_dn, self.user_filter),
                                           (self.group_base_dn, self.group_filter)):
            try:
                dn = self._find_dn(search_base, search_filter, 'mail', mail)
            except LDAPOperationError:
                continue
            self._remember(dn, mail)
            return dn
        raise LDAPOperationError(f"Member {mail} does not match any directory entry")

    # Writing

    def _group_values(self, group: Group, field: str) -> List[str]:
        if field == 'members':
            dns = [self._resolve_member_dn(member) for member in unique_folded(group.members)]
            return unique_folded(dns, key=dn_key)
        if field == 'aliases':
            return unique_folded(group.aliases)
        return [group.type] if group.type else []

    def _user_values(self, user: User, field: str) -> List[str]:
        value = getattr(user, field)
        if isinstance(value, bool):
            return ['TRUE' if value else 'FALSE']
        return [value] if value else []

    def _check_result(self, success: bool, operation: str, target: str):
        if not success:
            result = self.connection.result or {}
            raise LDAPOperationError(f"{operation} of {target} rejected: "
                                     f"{result.get('description', 'error')} {result.get('message', '')}".strip())

    def _write(self, operation: str, kind: str, key: str, call, details: str = ''):
        """Run one write, translating ldap3 failures and recording an audit entry."""
        self._require_connection()
        try:
            call()
        except LDAPException as e:
            audit_logger.log_directory_write(operation, kind, key, self.name, False, str(e))
            raise LDAPOperationError(f"{operation.capitalize()} of {kind} {key} failed: {e}")
        except UpdateServiceError as e:
            audit_logger.log_directory_write(operation, kind, key, self.name, False, str(e))
            raise
        audit_logger.log_directory_write(operation, kind, key, self.name, True, details)

    def group_dn(self, group: Group) -> str:
        return f"cn={escape_rdn(group.email)},{self.group_base_dn}"

    def user_dn(self, user: User) -> str:
        return f"{self.user_id_attribute}={escape_rdn(user.cid)},{self.user_base_dn}"

    def add_group(self, group: Group) -> None:
        def call():
            attributes = {'cn': group.email, self.group_email_attribute: group.email}
            for field in Group.SYNC_FIELDS:
                values = self._group_values(group, field)
                if values:
                    attributes[self.group_attributes[field]] = values
            dn = self.group_dn(group)
            self._check_result(self.connection.add(dn, self.group_object_classes, attributes),
                               'Addition', dn)
            self._remember(dn, group.email)

        self._write('add', 'group', group.email, call)

    def update_group(self, update: Update) -> None:
        changed = update.changed_fields()

        def call():
            dn = self._find_dn(self.group_base_dn, self.group_filter,
                               self.group_email_attribute, update.before.email)
            changes = {
                self.group_attributes[field]: [(MODIFY_REPLACE, self._group_values(update.after, field))]
                for field in changed
            }
            if update.before.email != update.after.email:
                changes[self.group_email_attribute] = [(MODIFY_REPLACE, [update.after.email])]
            if changes:
                self._check_result(self.connection.modify(dn, changes), 'Update', dn)

        self._write('update', 'group', update.after.email, call, f"changed: {', '.join(changed)}")

    def delete_group(self, group: Group) -> None:
        def call():
            dn = self._find_dn(self.group_base_dn, self.group_filter,
                               self.group_email_attribute, group.email)
            self._check_result(self.connection.delete(dn), 'Deletion', dn)
            self._forget(dn)

        self._write('delete', 'group', group.email, call)

    def add_user(self, user: User) -> None:
        def call():
            attributes = {
                self.user_id_attribute: user.cid,
                'cn': ' '.join(part for part in (user.first_name, user.second_name) if part) or user.cid,
            }
            for field in User.SYNC_FIELDS:
                values = self._user_values(user, field)
                if values:
                    attributes[self.user_attributes[field]] = values
            if user.password_hash:
                attributes['userPassword'] = self._password_value(user)
            dn = self.user_dn(user)
            self._check_result(self.connection.add(dn, self.user_object_classes, attributes),
                               'Addition', dn)
            self._remember(dn, user.mail)

        self._write('add', 'user', user.cid, call)

    def update_user(self, update: Update) -> None:
        changed = update.changed_fields()

        def call():
            dn = self._find_dn(self.user_base_dn, self.user_filter,
                               self.user_id_attribute, update.before.cid)
            changes = {
                self.user_attributes[field]: [(MODIFY_REPLACE, self._user_values(update.after, field))]
                for field in changed
            }
            if 'first_name' in changed or 'second_name' in changed:
                cn = ' '.join(part for part in (update.after.first_name, update.after.second_name) if part)
                changes['cn'] = [(MODIFY_REPLACE, [cn or update.after.cid])]
            if changes:
                self._check_result(self.connection.modify(dn, changes), 'Update', dn)
            if 'mail' in changed:
                self._forget(dn)
                self._remember(dn, update.after.mail)

        self._write('update', 'user', update.after.cid, call, f"changed: {', '.join(changed)}")

    def delete_user(self, user: User) -> None:
        def call():
            dn = self._find_dn(self.user_base_dn, self.user_filter, self.user_id_attribute, user.cid)
            self._check_result(self.connection.delete(dn), 'Deletion', dn)
            self._forget(dn)

        self._write('delete', 'user', user.cid, call)

    @staticmethod
    def _password_value(user: User) -> str:
        if user.hash_function:
            return f"{{{user.hash_function.upper()}}}{user.password_hash}"
        return user.password_hash

    @staticmethod
    def _parse_boolean(value: Any) -> bool:
        """Parse an LDAP boolean (TRUE/FALSE) or similar value."""
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in ('true', '1', 'yes')

    def __enter__(self):
        """Connect on entry."""
        if not self._connected:
            self.connect()
        return self
