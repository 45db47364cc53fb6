# Snapshot_Engine/idb_scripts.py
# In-page IndexedDB helpers. Each request is wrapped in a Promise so
# page.evaluate / JSHandle.evaluate can await it.

LIST_DATABASES = """
async () => {
    if (typeof indexedDB === 'undefined' || !indexedDB.databases) {
        throw new Error('indexedDB.databases() not available');
    }
    const dbs = await indexedDB.databases();
    return dbs
        .filter((d) => d && d.name)
        .map((d) => ({ name: d.name, version: d.version || null }));
}
"""

# evaluate_handle -> { db, blocked, created }
# held: connections this engine already has open for the same name; they are
# closed when the request is blocked so the open can proceed. A connection
# held elsewhere that never yields rejects after blockedTimeoutMs.
OPEN_DATABASE = """
async ({ name, version, createStores, held, blockedTimeoutMs }) => {
    return await new Promise((resolve, reject) => {
        const req = version == null ? indexedDB.open(name) : indexedDB.open(name, version);
        let blocked = false;
        let settled = false;
        const created = [];

        req.onupgradeneeded = (event) => {
            const db = event.target.result;
            for (const store of createStores || []) {
                if (!db.objectStoreNames.contains(store)) {
                    // key policy of the source store is unknown: out-of-line keys + generator
                    db.createObjectStore(store, { autoIncrement: true });
                    created.push(store);
                }
            }
        };
        req.onsuccess = (event) => {
            const db = event.target.result;
            if (settled) {
                // the caller already gave up on this open
                db.close();
                return;
            }
            settled = true;
            db.onversionchange = () => db.close();
            resolve({ db, blocked, created });
        };
        req.onerror = (event) => {
            event.preventDefault();
            if (settled) return;
            settled = true;
            reject(new Error(`Failed to open database '${name}': ${req.error}`));
        };
        req.onblocked = () => {
            blocked = true;
            for (const conn of held || []) {
                try { conn.close(); } catch (e) { /* already closed */ }
            }
            setTimeout(() => {
                if (settled) return;
                settled = true;
                reject(new Error(`Timeout: open of '${name}' still blocked after ${blockedTimeoutMs} ms`));
            }, blockedTimeoutMs);
        };
    });
}
"""

DESCRIBE_DATABASE = """
(db) => {
    const names = Array.from(db.objectStoreNames);
    const stores = [];
    if (names.length > 0) {
        const tx = db.transaction(names, 'readonly');
        for (const name of names) {
            const os = tx.objectStore(name);
            stores.push({ name, keyPath: os.keyPath, autoIncrement: os.autoIncrement });
        }
    }
    return { name: db.name, version: db.version, stores };
}
"""

DUMP_STORE = """
async (db, store) => {
    const tx = db.transaction([store], 'readonly');
    const os = tx.objectStore(store);
    const request = (r) => new Promise((resolve, reject) => {
        r.onsuccess = () => resolve(r.result);
        r.onerror = () => reject(new Error(`Failed to read '${store}': ${r.error}`));
    });
    const [keys, values] = await Promise.all([request(os.getAllKeys()), request(os.getAll())]);
    return { keys, values };
}
"""

# Returns { applied, committed, errors: [{ key, error }] }. Never rejects:
# store and item failures are reported back to the caller.
WRITE_STORE = """
async (db, { store, items }) => {
    const errors = [];
    let applied = 0;
    let tx;
    try {
        tx = db.transaction([store], 'readwrite');
    } catch (e) {
        return { applied: 0, committed: false, errors: [{ key: null, error: `Transaction error: ${e}` }] };
    }
    const os = tx.objectStore(store);
    const outOfLine = os.keyPath === null;

    const done = new Promise((resolve) => {
        tx.oncomplete = () => resolve(true);
        tx.onabort = () => {
            errors.push({ key: null, error: `Transaction aborted: ${tx.error}` });
            resolve(false);
        };
    });

    for (const item of items) {
        try {
            const req = outOfLine ? os.put(item.value, item.key) : os.put(item.value);
            req.onsuccess = () => { applied += 1; };
            req.onerror = (event) => {
                // keep the transaction alive for the remaining items
                event.preventDefault();
                errors.push({ key: String(item.key), error: `Failed to put value: ${req.error}` });
            };
        } catch (e) {
            errors.push({ key: String(item.key), error: `Key error: ${e}` });
        }
    }

    const committed = await done;
    return { applied: committed ? applied : 0, committed, errors };
}
"""

CLOSE_DATABASE = """
(db) => { db.close(); }
"""
